from __future__ import annotations

import pytest

from core import TranscriptSegment, default_generation_profile, merge_generation_profile
from generation.evidence import build_evidence_map
from generation.prompts import (
    PromptCatalog,
    prompt_variables,
    render_template,
    variation_directive,
    with_prompt_controls,
)
from utils.exceptions import PromptTemplateError


def _segments() -> list:
    texts = ["Cortei 30% do roteiro e a retencao subiu.", "Publique 3 vezes por semana com uma tese."]
    return [
        TranscriptSegment(idx=i + 1, start_ms=i * 4000, end_ms=(i + 1) * 4000, text=text)
        for i, text in enumerate(texts)
    ]


def test_render_template_blanks_unknown_placeholders() -> None:
    assert render_template("{{ a }}|{{missing}}|{{a}}", {"a": "x"}) == "x||x"
    assert render_template("sem placeholders", {}) == "sem placeholders"


def test_catalog_starts_with_one_active_default_per_task() -> None:
    catalog = PromptCatalog()

    snapshot = catalog.snapshot()

    assert set(snapshot) == {"analysis", "reels", "newsletter", "linkedin", "x"}
    assert all(entry["activeVersion"] == 1 for entry in snapshot.values())
    assert catalog.get_active_prompt("reels").name == "reels-pro-v9"


def test_create_and_activate_versions() -> None:
    catalog = PromptCatalog()

    created = catalog.create_version("linkedin", "linkedin-test", "sys {{tone}}", "user {{goal}}")

    assert created.version == 2
    assert not created.is_active
    assert catalog.get_active_prompt("linkedin").version == 1

    activated = catalog.activate("linkedin", 2)
    assert activated.is_active
    assert [item.is_active for item in catalog.versions("linkedin")] == [False, True]

    rendered = catalog.render("linkedin", {"tone": "seco", "goal": "leads"})
    assert rendered == {"name": "linkedin-test", "system_prompt": "sys seco", "user_prompt": "user leads"}


def test_create_with_activate_flag() -> None:
    catalog = PromptCatalog()
    catalog.create_version("x", "x-b", "s", "u")

    third = catalog.create_version("x", "x-c", "s", "u", activate=True)

    assert third.version == 3
    assert catalog.snapshot()["x"]["activeVersion"] == 3
    assert sum(1 for item in catalog.versions("x") if item.is_active) == 1


def test_catalog_errors() -> None:
    catalog = PromptCatalog()

    with pytest.raises(PromptTemplateError):
        catalog.create_version("podcast", "p", "s", "u")
    with pytest.raises(PromptTemplateError, match="not found"):
        catalog.activate("reels", 7)


def test_prompt_variables_include_profile_and_extras() -> None:
    profile = merge_generation_profile(default_generation_profile(), {"tone": "Seco e tecnico"})

    variables = prompt_variables(profile, "x", {"duration_sec": 90, "transcript_excerpt": "texto"})

    assert variables["tone"] == "Seco e tecnico"
    assert variables["cta_mode"] == "share"
    assert variables["length"] == "short"
    assert variables["duration_sec"] == "90"
    assert variables["transcript_excerpt"] == "texto"
    assert '"ctaMode": "share"' in variables["task_profile_json"]


def test_default_template_renders_without_leftover_placeholders() -> None:
    profile = default_generation_profile()
    catalog = PromptCatalog()

    rendered = catalog.render("newsletter", prompt_variables(profile, "newsletter"))

    assert "{{" not in rendered["user_prompt"]
    assert "- CTA mode: lead" in rendered["user_prompt"]


def test_prompt_controls_append_contract_and_evidence() -> None:
    profile = default_generation_profile()

    prompt = with_prompt_controls("BASE", profile, "x", build_evidence_map(_segments()))

    assert prompt.startswith("BASE\n\nBLOCO DE CONTROLE EDITORIAL:")
    assert "EVIDENCE_MAP:" in prompt
    assert "NUMEROS_OBSERVADOS: 30%" in prompt
    assert "BLOCO CRITICO X:" in prompt
    assert "CONTRATO_JSON_X:" in prompt
    assert prompt.endswith("INSTRUCAO FINAL: entregue SOMENTE JSON valido no contrato.")


def test_prompt_controls_without_hard_rules() -> None:
    prompt = with_prompt_controls("BASE", default_generation_profile(), "linkedin")

    assert "EVIDENCE_MAP:" not in prompt
    assert "BLOCO CRITICO" not in prompt
    assert "CONTRATO_JSON_LINKEDIN:" in prompt


def test_variation_directive() -> None:
    assert variation_directive("reels", 0, 2) == "Variacao 1/2. Entregue a melhor versao possivel."
    assert variation_directive("x", 1, 3).startswith("Variacao 2/3. Traga novos hooks")
    assert "fidelidade ao texto" in variation_directive("analysis", 1, 2)
