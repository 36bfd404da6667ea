"""Translate raw provider errors into user-facing messages.

RunningHub answers in Chinese or in technical English that means nothing to
end users. ``translate`` is the only place allowed to rewrite that text.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple


@dataclass(frozen=True)
class TranslatedError:
    category: str
    message: str
    suggested_action: str


# (category, needles, message, suggested action), first match wins.
# Timeout is checked before the generic workflow failure so that
# "workflow execution timeout" is reported as a timeout.
_RULES: Sequence[Tuple[str, Tuple[str, ...], str, str]] = (
    (
        "timeout",
        ("timeout", "timed out", "cancelled automatically"),
        "Processamento demorou muito",
        "Tente novamente com uma imagem menor ou aguarde alguns minutos.",
    ),
    (
        "server",
        ("工作流运行失败", "workflow"),
        "Servidor temporariamente indisponível",
        "Aguarde 5 minutos e tente novamente. Se persistir, use uma imagem diferente.",
    ),
    (
        "resource",
        ("vram", "memory", "oom", "out of memory"),
        "Imagem muito complexa",
        "Use uma imagem menor ou reduza a resolução de saída.",
    ),
    (
        "no_output",
        ("no output", "no result", "empty result"),
        "Processamento não retornou resultado",
        "Aguarde 5 minutos e tente novamente.",
    ),
    (
        "connectivity",
        ("network", "connection", "fetch"),
        "Erro de conexão com o servidor",
        "Verifique sua conexão e tente novamente.",
    ),
    (
        "auth",
        ("unauthorized", "forbidden", "401", "403"),
        "Erro de autenticação no servidor",
        "Atualize a página e tente novamente.",
    ),
)

GENERIC_MESSAGE = "Erro no processamento"
GENERIC_ACTION = "Tente novamente ou use uma imagem diferente."


def translate(raw_message: Optional[str]) -> TranslatedError:
    """Classify a raw error string by substring and return localized copy.

    Unknown errors keep the original text so real failures are never masked.
    """
    raw = raw_message or ""
    lowered = raw.lower()
    for category, needles, message, action in _RULES:
        if any(needle in raw or needle in lowered for needle in needles):
            return TranslatedError(category=category, message=message, suggested_action=action)
    return TranslatedError(
        category="generic",
        message=raw or GENERIC_MESSAGE,
        suggested_action=GENERIC_ACTION,
    )
