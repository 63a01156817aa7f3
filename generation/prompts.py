"""Versioned prompt catalog and prompt-control rendering."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import re
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from core import AI_TASKS, GenerationProfile, task_name
from generation.evidence import EvidenceMap, evidence_map_prompt_block
from generation.quality import quality_plan
from utils.exceptions import PromptTemplateError


logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([a-zA-Z0-9_]+)\s*\}\}")


class PromptVersion(BaseModel):
    task: str
    version: int
    name: str
    system_prompt: str
    user_prompt_template: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def render_template(template: str, variables: Mapping[str, str]) -> str:
    """Replace `{{ name }}` placeholders; unknown names render as empty strings."""
    return _PLACEHOLDER_RE.sub(lambda match: str(variables.get(match.group(1), "")), template)


def _config_block(label: str, with_cta: bool) -> List[str]:
    prefix = f" de {label}" if label else ""
    lines = [
        "CONFIG:",
        "- publico: {{audience}}",
        "- objetivo: {{goal}}",
        "- tom: {{tone}}",
        "- idioma: {{language}}",
        f"- estrategia{prefix}: {{{{strategy}}}}",
        f"- foco{' ' + label if label else ''}: {{{{focus}}}}",
        f"- outcome{' ' + label if label else ''}: {{{{target_outcome}}}}",
        "- nivel de consciencia: {{audience_level}}",
        "- intensidade de copy: {{length}}" if label else "- intensidade: {{length}}",
    ]
    if with_cta:
        lines.append("- CTA mode: {{cta_mode}}")
    lines.extend(
        [
            "- modo qualidade: {{quality_mode}}",
            "- variacoes alvo: {{quality_variations}}",
            "- refinos alvo: {{quality_refine_passes}}",
            "- voz: {{voice_identity}}",
            "- regras de voz: {{voice_rules}}",
            "- termos proibidos: {{voice_banned_terms}}",
            "- aprendizados vencedores: {{performance_wins}}",
            "- evitar padroes: {{performance_avoid}}",
            "- KPI principal: {{performance_kpi}}",
        ]
    )
    return lines


_DEFAULT_PROMPTS: Dict[str, Dict[str, Any]] = {
    "analysis": {
        "name": "analysis-pro-v8",
        "system": [
            "Voce e um Estrategista Editorial Principal especializado em retencao narrativa, arquitetura argumentativa e distribuicao multicanal.",
            "Seu trabalho nao e resumir. Seu trabalho e dissecar a estrutura mental do conteudo e encontrar os ativos de maior potencial.",
            "Regras inegociaveis:",
            "1) Retorne SOMENTE JSON valido, sem markdown e sem texto fora do JSON.",
            "2) Nao invente fatos, numeros, exemplos ou contexto externo.",
            "3) Cada campo deve ser especifico e defensavel com base no texto.",
            "4) Nunca use travessao em nenhum texto.",
            "5) Escreva em pt-BR tecnico, pragmatico e sem frases vazias.",
            "6) Priorize evidencias que aparecem na transcricao inteira, nao apenas no inicio.",
            "7) Numero factual so quando existir no texto. Numero ilustrativo apenas com marcador de exemplo hipotetico.",
            "Padrao de qualidade por campo:",
            "- thesis: 1 frase unica com mecanismo causal explicito.",
            "- topics: 4 a 8 temas concretos, sem tokens vagos como 'coisa', 'pessoa', 'isso'.",
            "- retentionMoments: 4 a 8 trechos com alto potencial de prender atencao e compartilhamento.",
            "- editorialAngles: 3 a 6 angulos realmente distintos por canal/formato.",
            "- qualityScores: calibrar de forma rigida, sem inflar nota.",
        ],
        "user": [
            "Analise a transcricao abaixo com rigor editorial senior.",
            "TRANSCRICAO:",
            "{{transcript_excerpt}}",
            *_config_block("", with_cta=False),
            "TAREFA:",
            "1) Identifique a tese real em uma frase objetiva e especifica.",
            "2) Mapeie structure com problema, tensao, insight e aplicacao.",
            "3) Liste 4 a 8 retentionMoments com tipo e motivo de retencao.",
            "4) Liste 4 a 8 topics de alto potencial para repurpose.",
            "5) Liste 3 a 6 editorialAngles com canal e formato ideal.",
            "6) Liste 3 a 6 recommendations acionaveis para elevar qualidade final.",
            "7) Liste weakSpots com diagnostico claro de fraquezas.",
            "8) Preencha qualityScores e polarityScore com calibracao rigida.",
            "Saida final: SOMENTE JSON no schema definido.",
        ],
    },
    "reels": {
        "name": "reels-pro-v9",
        "system": [
            "Voce e Diretor Criativo de video curto especializado em retencao e compartilhamento organico.",
            "Sua funcao e selecionar os melhores cortes por potencial e escrever copy premium para cada corte.",
            "Estrutura editorial obrigatoria por clip: title com tensao imediata, caption com hook, desenvolvimento pratico e CTA, whyItWorks com gatilho de retencao.",
            "Regras inegociaveis:",
            "1) Retorne SOMENTE JSON valido.",
            "2) Nao invente indices fora da transcricao.",
            "3) Nao referencie timestamps ou tecnicalidades no texto final.",
            "4) Nao invente fatos fora do contexto do corte.",
            "5) Nunca use travessao em nenhum texto.",
            "6) Numero factual so quando existir no trecho. Em simulacao, marque explicitamente como exemplo.",
            "7) Cada clip deve ter CTA diferente e especifico com acao observavel.",
            "8) Evite repetir hashtags entre clips.",
        ],
        "user": [
            "ANALISE (JSON):",
            "{{analysis_json}}",
            "MAPA DE CORTES CANDIDATOS (opcional):",
            "{{clips_context}}",
            "DURACAO TOTAL (s): {{duration_sec}}",
            "TRANSCRICAO DE APOIO:",
            "{{transcript_excerpt}}",
            *_config_block("reels", with_cta=True),
            "TAREFA:",
            "Escolha 2 a 3 cortes com maior potencial de ganhar seguidores.",
            "Nao selecione cortes de introducao fraca no comeco do video.",
            "No caption, inclua CTA explicito conforme CTA mode e com variacao entre clips.",
            "No whyItWorks, explique em 2 a 4 frases por que o corte segura atencao e gera acao.",
            "Se usar numero fora do trecho, rotule como exemplo hipotetico.",
            "Saida final: SOMENTE JSON.",
        ],
    },
    "newsletter": {
        "name": "newsletter-pro-v7",
        "system": [
            "Voce escreve newsletter de autoridade premium para publico profissional exigente.",
            "Arquitetura obrigatoria: tensao inicial, clarificacao da tese, desenvolvimento estruturado, aplicacao pratica, sintese final.",
            "Regras inegociaveis:",
            "1) Retorne SOMENTE JSON valido.",
            "2) Nao invente dados, historicos ou exemplos externos ao conteudo.",
            "3) Evite cliches, autoajuda e linguagem inflada.",
            "4) Nunca use travessao em nenhum texto.",
            "5) Numero factual apenas com base na transcricao. Exemplo numerico somente se marcado como hipotetico.",
            "Composicao obrigatoria: intro + 3 a 5 insights + application + cta.",
        ],
        "user": [
            "ANALISE (JSON):",
            "{{analysis_json}}",
            "TRANSCRICAO:",
            "{{transcript_excerpt}}",
            *_config_block("newsletter", with_cta=True),
            "TAREFA:",
            "1) Crie headline forte, especifica e orientada a beneficio real.",
            "2) Crie subheadline com contexto, promessa e foco pratico.",
            "3) Estruture sections com progressao de argumento, incluindo 3 a 5 insights com mecanismo causal.",
            "4) Em application, entregue 5 a 8 bullets de implementacao objetiva.",
            "5) Finalize com CTA que estimule resposta qualificada.",
            "Saida final: SOMENTE JSON.",
        ],
    },
    "linkedin": {
        "name": "linkedin-pro-v6",
        "system": [
            "Voce e estrategista de autoridade no LinkedIn com foco em comentario qualificado, credibilidade e compartilhamento.",
            "Estrutura editorial obrigatoria: hook forte, desenvolvimento com progressao, fechamento com pergunta especifica.",
            "Regras inegociaveis:",
            "1) Retorne SOMENTE JSON valido.",
            "2) Body em 4 a 9 paragrafos curtos, cada um com funcao clara.",
            "3) Nunca use travessao em nenhum texto.",
            "4) Numero factual apenas se estiver no texto. Exemplo numerico hipotetico deve ser explicitado.",
        ],
        "user": [
            "ANALISE (JSON):",
            "{{analysis_json}}",
            "TRANSCRICAO:",
            "{{transcript_excerpt}}",
            *_config_block("linkedin", with_cta=True),
            "TAREFA:",
            "1) Crie hook forte e especifico, sem clickbait barato.",
            "2) Construa body com progressao de argumento e exemplos aplicaveis.",
            "3) Feche com pergunta concreta que estimule comentario util.",
            "Saida final: SOMENTE JSON.",
        ],
    },
    "x": {
        "name": "x-pro-v7",
        "system": [
            "Voce escreve para X com foco em tensao argumentativa, punchline, ritmo e substancia.",
            "Regras inegociaveis:",
            "1) Retorne SOMENTE JSON valido.",
            "2) standalone deve ser publicavel sem contexto adicional.",
            "3) thread deve ter progressao real: problema, friccao, insight, aplicacao e fechamento.",
            "4) Nunca use travessao em nenhum texto.",
            "5) Numero factual so com origem na transcricao. Exemplo numerico deve ser marcado como hipotetico.",
            "6) Inclua CTA explicito em pelo menos um standalone e no fechamento da thread.",
        ],
        "user": [
            "ANALISE (JSON):",
            "{{analysis_json}}",
            "TRANSCRICAO:",
            "{{transcript_excerpt}}",
            *_config_block("x", with_cta=True),
            "TAREFA:",
            "1) Crie 4 a 7 posts standalone com tensao, especificidade, prova e aplicacao.",
            "2) Crie thread de 5 a 8 posts com narrativa progressiva e fechamento forte.",
            "3) Defina notes.style em frase curta e objetiva.",
            "Saida final: SOMENTE JSON.",
        ],
    },
}


def default_prompt(task: Any) -> PromptVersion:
    name = task_name(task)
    template = _DEFAULT_PROMPTS[name]
    return PromptVersion(
        task=name,
        version=1,
        name=template["name"],
        system_prompt="\n".join(template["system"]),
        user_prompt_template="\n".join(template["user"]),
    )


class PromptCatalog:
    """In-memory, lock-protected prompt versions; one active version per task."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._versions: Dict[str, List[PromptVersion]] = {task: [default_prompt(task)] for task in AI_TASKS}
        self._active: Dict[str, int] = {task: 1 for task in AI_TASKS}

    def get_active_prompt(self, task: Any) -> PromptVersion:
        name = task_name(task)
        with self._lock:
            active = self._active.get(name)
            for version in self._versions.get(name, []):
                if version.version == active:
                    return version.model_copy()
        return default_prompt(name)

    def versions(self, task: Any) -> List[PromptVersion]:
        with self._lock:
            return [version.model_copy() for version in self._versions.get(task_name(task), [])]

    def create_version(
        self,
        task: Any,
        name: str,
        system_prompt: str,
        user_prompt_template: str,
        activate: bool = False,
    ) -> PromptVersion:
        """Append version `max + 1`; activating it deactivates every other version."""
        key = task_name(task)
        if key not in self._versions:
            raise PromptTemplateError(f"Unknown task {key!r}")
        with self._lock:
            current = self._versions[key]
            number = max((item.version for item in current), default=0) + 1
            created = PromptVersion(
                task=key,
                version=number,
                name=name,
                system_prompt=system_prompt,
                user_prompt_template=user_prompt_template,
                is_active=activate,
            )
            if activate:
                current = [item.model_copy(update={"is_active": False}) for item in current]
                self._active[key] = number
            self._versions[key] = sorted(current + [created], key=lambda item: item.version)
        logger.info("Created prompt %s v%d for %s (active=%s)", name, number, key, activate)
        return created.model_copy()

    def activate(self, task: Any, version: int) -> PromptVersion:
        key = task_name(task)
        with self._lock:
            current = self._versions.get(key, [])
            if not any(item.version == version for item in current):
                raise PromptTemplateError(f"Prompt version {version} not found for task {key}")
            self._versions[key] = [
                item.model_copy(update={"is_active": item.version == version}) for item in current
            ]
            self._active[key] = version
            return next(item for item in self._versions[key] if item.version == version).model_copy()

    def render(self, task: Any, variables: Mapping[str, str]) -> Dict[str, str]:
        active = self.get_active_prompt(task)
        return {
            "name": active.name,
            "system_prompt": render_template(active.system_prompt, variables),
            "user_prompt": render_template(active.user_prompt_template, variables),
        }

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {
                task: {
                    "activeVersion": self._active[task],
                    "versions": [item.model_dump(mode="json") for item in versions],
                }
                for task, versions in self._versions.items()
            }


def prompt_variables(
    profile: GenerationProfile,
    task: Any,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, str]:
    """Every profile field a template may reference, as plain strings."""
    name = task_name(task)
    config = profile.task(name)
    memory = profile.memory(name)
    variables = {
        "audience": profile.audience,
        "goal": profile.goal,
        "tone": profile.tone,
        "language": profile.language,
        "strategy": config.strategy,
        "focus": config.focus,
        "target_outcome": config.target_outcome,
        "audience_level": config.audience_level,
        "length": config.length,
        "cta_mode": config.cta_mode,
        "quality_mode": profile.quality.mode,
        "quality_variations": str(profile.quality.variation_count),
        "quality_refine_passes": str(profile.quality.refine_passes),
        "voice_identity": profile.voice.identity,
        "voice_rules": profile.voice.writing_rules,
        "voice_banned_terms": profile.voice.banned_terms,
        "voice_signature_phrases": profile.voice.signature_phrases,
        "performance_wins": memory.wins,
        "performance_avoid": memory.avoid,
        "performance_kpi": memory.kpi,
        "generation_profile_json": json.dumps(profile.model_dump(by_alias=True), ensure_ascii=False),
        "task_profile_json": json.dumps(config.model_dump(by_alias=True), ensure_ascii=False),
        "performance_memory_json": json.dumps(memory.model_dump(by_alias=True), ensure_ascii=False),
    }
    for key, value in dict(extra or {}).items():
        variables[key] = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
    return variables


def prompt_control_appendix(profile: GenerationProfile, task: Any) -> str:
    name = task_name(task)
    config = profile.task(name)
    memory = profile.memory(name)
    plan = quality_plan(profile, name)
    return "\n".join(
        [
            "BLOCO DE CONTROLE EDITORIAL:",
            f"- modo_qualidade: {profile.quality.mode}",
            f"- variacoes_objetivo: {plan.variation_count}",
            f"- refine_passes_objetivo: {plan.refine_passes}",
            f"- foco_tarefa: {config.focus}",
            f"- outcome_tarefa: {config.target_outcome}",
            f"- nivel_publico: {config.audience_level}",
            f"- voice_identity: {profile.voice.identity}",
            f"- voice_rules: {profile.voice.writing_rules}",
            f"- voice_banned_terms: {profile.voice.banned_terms or 'nenhum'}",
            f"- voice_signature_phrases: {profile.voice.signature_phrases or 'nenhuma'}",
            f"- performance_wins: {memory.wins or 'sem historico'}",
            f"- performance_avoid: {memory.avoid or 'sem historico'}",
            f"- performance_kpi: {memory.kpi or 'nao definido'}",
            "Regra: nunca usar travessao.",
            "Regra: nunca entregar texto truncado com reticencias.",
        ]
    )


_HARD_RULES = {
    "analysis": [
        "BLOCO CRITICO ANALISE:",
        "1) Tese precisa trazer mecanismo causal, nao resumo superficial.",
        "2) Topicos devem ser especificos, sem tokens vagos e sem repeticao.",
        "3) Retention moments precisam citar trechos defensaveis pela transcricao.",
        "4) Recomendacoes devem ser implementaveis em conteudo real.",
        "5) qualityScores acima de 8 so quando houver evidencias claras no texto.",
        "6) JSON alvo deve incluir thesis, topics, contentType, polarityScore, recommendations, structure, "
        "retentionMoments, editorialAngles, weakSpots e qualityScores.",
    ],
    "reels": [
        "BLOCO CRITICO REELS:",
        "1) Evite abertura protocolar e trechos sem friccao.",
        "2) Priorize cortes com conflito, alerta, regra ou prova pratica.",
        "3) Nao use titulo generico nem CTA vazio.",
    ],
    "x": [
        "BLOCO CRITICO X:",
        "1) Nao abrevie texto com reticencias.",
        "2) Nao entregue frases truncadas.",
        "3) Cada post precisa fechar uma unidade de pensamento.",
    ],
}

_OUTPUT_CONTRACTS = {
    "analysis": (
        "CONTRATO_JSON_ANALYSIS:\n"
        '{ "thesis": "...", "topics": ["..."], "contentType": "educational|provocative|story|framework", '
        '"polarityScore": 0, "recommendations": ["..."], "structure": { "problem": "...", "tension": "...", '
        '"insight": "...", "application": "..." }, "retentionMoments": [ { "text": "...", "type": "...", '
        '"whyItGrabs": "..." } ], "editorialAngles": [ { "angle": "...", "idealChannel": "...", "format": "...", '
        '"whyStronger": "..." } ], "weakSpots": [ { "issue": "...", "why": "..." } ], "qualityScores": '
        '{ "insightDensity": 0, "standaloneClarity": 0, "polarity": 0, "practicalValue": 0 } }'
    ),
    "reels": (
        "CONTRATO_JSON_REELS:\n"
        '{ "clips": [ { "startIdx": 1, "endIdx": 2, "title": "...", "caption": "...", "hashtags": ["#..."], '
        '"whyItWorks": "...", "scores": { "hook": 0, "clarity": 0, "retention": 0, "share": 0 } } ] }'
    ),
    "newsletter": (
        "CONTRATO_JSON_NEWSLETTER:\n"
        '{ "headline": "...", "subheadline": "...", "sections": [ { "type": "intro", "text": "..." }, '
        '{ "type": "insight", "title": "...", "text": "..." }, { "type": "application", "bullets": ["..."] }, '
        '{ "type": "cta", "text": "..." } ] }'
    ),
    "linkedin": 'CONTRATO_JSON_LINKEDIN:\n{ "hook": "...", "body": ["..."], "ctaQuestion": "..." }',
    "x": 'CONTRATO_JSON_X:\n{ "standalone": ["..."], "thread": ["..."], "notes": { "style": "..." } }',
}


def task_hard_rules(task: Any) -> str:
    return "\n".join(_HARD_RULES.get(task_name(task), []))


def task_output_contract(task: Any) -> str:
    return _OUTPUT_CONTRACTS[task_name(task)]


def with_prompt_controls(
    base_user_prompt: str,
    profile: GenerationProfile,
    task: Any,
    evidence_map: Optional[EvidenceMap] = None,
) -> str:
    """Append the editorial control block, evidence map, hard rules and JSON contract."""
    evidence_block = ""
    if evidence_map is not None:
        evidence_block = (
            f"{evidence_map_prompt_block(evidence_map)}\n"
            "REGRA CRITICA: Nao apresentar numero factual fora do EVIDENCE_MAP. "
            "Numeros ilustrativos so com marcador explicito de exemplo hipotetico."
        )
    appendix = "\n".join(item for item in (prompt_control_appendix(profile, task), evidence_block) if item)
    hard_rules = task_hard_rules(task)
    middle = f"{hard_rules}\n" if hard_rules else ""
    return (
        f"{base_user_prompt}\n\n{appendix}\n{middle}{task_output_contract(task)}\n"
        "INSTRUCAO FINAL: entregue SOMENTE JSON valido no contrato."
    )


_VARIATION_HINTS = {
    "reels": "Diferencie angulos, evite repeticao semantica e maximize potencial de seguir perfil.",
    "newsletter": "Traga estrutura diferente, com profundidade pratica e aplicacao mais forte.",
    "linkedin": "Priorize gancho alternativo e progressao argumentativa distinta.",
    "x": "Traga novos hooks e thread com progressao diferente.",
}


def variation_directive(task: Any, variant_index: int, variation_count: int) -> str:
    label = f"Variacao {variant_index + 1}/{variation_count}."
    if variant_index == 0:
        return f"{label} Entregue a melhor versao possivel."
    hint = _VARIATION_HINTS.get(
        task_name(task), "Diferencie tese e recomendacoes sem perder fidelidade ao texto."
    )
    return f"{label} {hint}"
