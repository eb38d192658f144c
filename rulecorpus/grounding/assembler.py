"""
Grounding assembler: corpus (+ optional Act) -> the complete system text for
a strict-citation model.

Layout of the grounding context, sections separated by a blank line:

    <policy>
    ===== BEGIN: CAA (Act) =====      (only when Act text is present)
    <act markdown>
    ===== END: CAA (Act) =====
    ===== BEGIN: CAR (Rules) =====
    <combined corpus>
    ===== END: CAR (Rules) =====

Calling the model is someone else's job: build_chat_request() returns the
request body and stops there.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Union

import tiktoken

from rulecorpus.common.errors import ConfigError

logger = logging.getLogger("grounding")

ACT_LABEL = "CAA (Act)"
RULES_LABEL = "CAR (Rules)"

POLICY = "\n".join(
    [
        "You are advising using the current New Zealand Civil Aviation Act 2023 (CAA) and Civil Aviation Rules (CAR) contained in the system prompt.",
        "Authoritative sources are LIMITED to the provided CAA and CAR texts. Do NOT rely on internal knowledge, training data, or external sources.",
        "",
        "Strict requirements for EVERY response:",
        "- Identify and cite the controlling authority: CAA sections (e.g., CAA s 30) and CAR rules (e.g., Part 091, rule 91.xx).",
        "- The Act prevails over the Rules. If there is any tension, rely on the Act and explicitly note the conflict.",
        "- For every substantive proposition, include a short verbatim quotation from the relevant provision in a fenced code block.",
        "- Include a URL for every citation. Prefer URLs found in metadata (source_url) inside the provided texts.",
        "- If the answer cannot be grounded in the provided CAA/CAR texts, state that explicitly and stop.",
        "",
        "Formatting (Markdown only):",
        "- Output MUST contain these sections, in this order, and nothing else:",
        "  - ## Issue",
        "  - ## Rule (include one or more verbatim quotations in fenced code blocks)",
        "  - ## Application",
        "  - ## Conclusion",
        "  - ## Citations",
        "- Within the Rule section, separate \"Act (CAA)\" and \"Rules (CAR)\" when both apply.",
        "- Verbatim quotations MUST be fenced using exactly ```text.",
        "- Each citation line MUST be precise, for example: CAA s <section> - <url> OR CAR Part <part>, rule <rule> - <url>.",
        "",
        "Tone:",
        "- Be precise and conservative; avoid speculation. State any necessary assumptions briefly in the Application.",
        "- Prefer primary authority (CAA first, then CAR). Explain interpretive choices only when necessary.",
        "- Where relevant, surface definitions and offence/penalty provisions from the provided texts.",
        "",
        "Example quote block:",
        "```text",
        "Quoted passage exactly as written...",
        "```",
    ]
)


def begin_marker(label: str) -> str:
    return f"===== BEGIN: {label} ====="


def end_marker(label: str) -> str:
    return f"===== END: {label} ====="


def assemble_grounding(corpus_text: str, act_text: Optional[str] = None, *, policy: str = POLICY) -> str:
    """
    Build the grounding context. The Act section is omitted when act_text is
    None, empty or whitespace only; the Rules section is always present.
    """
    sections = [policy]
    if act_text and act_text.strip():
        sections += [begin_marker(ACT_LABEL), act_text, end_marker(ACT_LABEL)]
    sections += [begin_marker(RULES_LABEL), corpus_text, end_marker(RULES_LABEL)]
    return "\n\n".join(sections)


def load_grounding(
    corpus_path: Union[str, Path],
    act_path: Optional[Union[str, Path]] = None,
) -> str:
    """
    Read the corpus (required) and the Act (optional) and assemble them.
    A missing corpus is a ConfigError: there is nothing to ground on.
    """
    corpus_path = Path(corpus_path)
    if not corpus_path.is_file():
        raise ConfigError(f"Corpus file not found: {corpus_path}")
    corpus_text = corpus_path.read_text(encoding="utf-8")

    act_text = None
    if act_path is not None:
        act_path = Path(act_path)
        if act_path.is_file():
            act_text = act_path.read_text(encoding="utf-8")
        else:
            logger.warning("Act file not found at %s; grounding on the Rules only", act_path)

    return assemble_grounding(corpus_text, act_text)


@lru_cache(maxsize=1)
def _encoder():
    # cl100k_base covers the GPT-4/4o families
    return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    """Model-aligned token count of the grounding text."""
    return len(_encoder().encode(text, disallowed_special=()))


def build_chat_request(
    grounding: str,
    question: str,
    *,
    model: str,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Chat-completions request body for the model collaborator:
    the grounding text as the system message, the question as the user message.
    """
    question = question.strip()
    if not question:
        raise ValueError("question must not be empty")

    payload: Dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": grounding},
            {"role": "user", "content": question},
        ],
    }
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens
    if temperature is not None:
        payload["temperature"] = temperature
    return payload
