# src/cvchat/core/constants.py
import re

# Reply filler: openers, listing tails and transitions the model drifts into
FILLER_OPENERS = [
    re.compile(r"^I've worked in [\w-]+\s+(?:technologies|domains?|areas?|fields?)?\s*for \d+ years?,?\s*", re.I),
    re.compile(r"^I've consistently delivered (?:high-quality )?work (?:across|for|over) \d+ years[^.]*\.\s*", re.I),
    re.compile(r"^My expertise spans\s+[^.]+\.\s*", re.I),
    re.compile(r"^I've demonstrated expertise in (?:multiple areas?|various domains?),?\s*", re.I),
    re.compile(r"^I'?m a (?:junior|mid-level|senior|principal)(?:-level)? professional with a strong background in[^.]+\.\s*", re.I),
]
FILLER_TRANSITIONS = re.compile(r"^(?:Notably|Additionally|Moreover|Furthermore|In addition),?\s*", re.I)
FILLER_TAILS = [
    re.compile(r"\s+across (?:multiple|various) (?:projects|domains|areas)(?=[.!?]?$)", re.I),
    re.compile(r",?\s*(?:utilising|using) (?:a range of |various )?(?:skills|technologies) (?:including|such as)[^.]+", re.I),
]

SENT_SPLIT = re.compile(r"(?<=[.!?])\s+(?=[A-Z0-9\"'(])")
SENT_END   = re.compile(r"[.!?][\"')\]]?$")

EMPTY_REPLY_FALLBACK = "I have relevant experience in this area; the matching skills are listed above."
NO_MATCH_REPLY       = "I couldn't find a matching skill for that question. Try naming a specific technology."

HIGH_CONFIDENCE   = 0.80
MEDIUM_CONFIDENCE = 0.65
