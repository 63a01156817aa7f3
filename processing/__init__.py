"""
Processing Module
Transcript parsing.
"""
from .srt_parser import ParsedTranscript, SrtParser, parse_srt, parse_srt_file

__all__ = [
    "ParsedTranscript",
    "SrtParser",
    "parse_srt",
    "parse_srt_file",
]
