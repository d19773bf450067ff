# src/cvchat/core/validation.py
import re

from cvchat.core.errors import ValidationError

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F-\x9F]")
SCRIPT_TAG    = re.compile(r"<script[^>]*>.*?</script>", re.I | re.S)
HTML_TAG      = re.compile(r"<[^>]*>")
REPEAT_RUN    = re.compile(r"(.)\1{4,}")    # 5+ of the same char
LONG_RUN      = re.compile(r"(.)\1{9,}")    # 10+ of the same char
ALPHA         = re.compile(r"[A-Za-z]")
PUNCT         = re.compile(r"[!\"#$%&'()*+,\-./:;<=>?@\[\\\]^_`{|}~]")

INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(previous|all|above|prior)\s+(instructions|prompts?|rules?|directives?)", re.I),
    re.compile(r"forget\s+(everything|all|previous)", re.I),
    re.compile(r"\bsystem\s*:", re.I),
    re.compile(r"\bassistant\s*:", re.I),
    re.compile(r"<\|im_(start|end)\|>", re.I),
    re.compile(r"\[/?INST\]", re.I),
    re.compile(r"###\s*Instruction", re.I),
]

MIN_ALPHA_RATIO = 0.5
MAX_PUNCT_RATIO = 0.3


def sanitize(text: str) -> str:
    s = CONTROL_CHARS.sub("", text)
    s = SCRIPT_TAG.sub("", s)
    s = HTML_TAG.sub("", s)
    return " ".join(s.split())


def normalize_query(text: str) -> str:
    """Cache-key form of a query: curly quotes flattened, lowercased, whitespace collapsed."""
    s = (text or "")
    s = s.replace("“", '"').replace("”", '"').replace("’", "'").replace("\u00A0", " ")
    return " ".join(s.lower().split())


class QueryValidator:
    """Format/spam validation for incoming questions. Never looks at meaning."""

    def __init__(self, min_length: int = 10, max_length: int = 200):
        self.min_length = min_length
        self.max_length = max_length

    def _bounds_msg(self) -> str:
        return f"Questions must be between {self.min_length} and {self.max_length} characters."

    def validate(self, raw) -> str:
        if not isinstance(raw, str) or not raw.strip():
            raise ValidationError("Please enter a question. " + self._bounds_msg())

        # length before sanitising, so huge payloads never reach the regexes below
        if len(raw) > self.max_length:
            raise ValidationError(
                f"That question is too long ({len(raw)} characters). " + self._bounds_msg(),
                {"check": "length", "length": len(raw)},
            )

        text = sanitize(raw)
        if len(text) < self.min_length:
            raise ValidationError(
                f"That question is too short ({len(text)} characters). " + self._bounds_msg(),
                {"check": "length", "length": len(text)},
            )

        if LONG_RUN.search(text) or len(REPEAT_RUN.findall(text)) > 2:
            raise ValidationError(
                "Please avoid long runs of repeated characters and rephrase your question.",
                {"check": "repetition"},
            )

        punct = len(PUNCT.findall(text)) / len(text)
        if punct > MAX_PUNCT_RATIO:
            raise ValidationError(
                "Your question contains too much punctuation. Please rephrase it in plain words.",
                {"check": "punctuation", "ratio": round(punct, 3)},
            )

        alpha = len(ALPHA.findall(text)) / len(text)
        if alpha < MIN_ALPHA_RATIO:
            raise ValidationError(
                "Your question should be mostly words. Please rephrase it.",
                {"check": "alphabetic", "ratio": round(alpha, 3)},
            )

        for pat in INJECTION_PATTERNS:
            if pat.search(text):
                raise ValidationError(
                    "That doesn't look like a question about skills or experience. Please rephrase it.",
                    {"check": "injection"},
                )

        return text
