"""Entry identity and wordlist merging."""
import logging
import re
import unicodedata
from typing import Dict, List, Optional, Tuple

import xxhash

from supercards.models.cards import VocabularyEntry

logger = logging.getLogger(__name__)

# CJK, full-width, general and ASCII punctuation
PUNCTUATION_RE = re.compile(
    r"[\u3000-\u303F\uFF00-\uFFEF\u2000-\u206F\u0021-\u002F\u003A-\u0040"
    r"\u005B-\u0060\u007B-\u007E\u00A0-\u00BF\u2010-\u2027\u2030-\u205E]"
)
WHITESPACE_RE = re.compile(r"[\s\u00A0\u2000-\u200B\u2028\u2029\u202F\u205F\u3000\uFEFF]")

# Combining marks left behind by NFD on toned pinyin
TONE_MARKS = {
    "\u0304": "1",  # macron
    "\u0301": "2",  # acute
    "\u030C": "3",  # caron
    "\u0300": "4",  # grave
}


def canonicalize_hanzi(written: str) -> str:
    """NFKC-normalize and strip whitespace and punctuation."""
    if not written:
        return ""
    normalized = unicodedata.normalize("NFKC", written)
    return PUNCTUATION_RE.sub("", WHITESPACE_RE.sub("", normalized))


def canonicalize_pinyin(toned: str) -> str:
    """Lowercase only, tone diacritics are kept."""
    if not toned:
        return ""
    return toned.lower()


def generate_entry_id(written: str, toned: str) -> str:
    """Content hash of the canonical written form and toned transcription.

    Identical content always yields the same 8-character hex ID, which is
    how re-imports are deduplicated.
    """
    hash_input = f"{canonicalize_hanzi(written)}|{canonicalize_pinyin(toned)}|"
    return xxhash.xxh32_hexdigest(hash_input.encode("utf-8"))


def split_pinyin(toned: str) -> Tuple[str, str]:
    """Derive the bare transcription and the tone sequence.

    huānyíng -> ("huanying", "12"). Numbered pinyin (huan1ying2) falls back
    to its digits.
    """
    decomposed = unicodedata.normalize("NFD", toned.lower())
    tones = "".join(TONE_MARKS[char] for char in decomposed if char in TONE_MARKS)
    if not tones:
        tones = "".join(re.findall(r"[1-5]", toned))
    bare = re.sub(r"[^a-z]", "", "".join(c for c in decomposed if not unicodedata.combining(c)))
    return bare, tones


def create_entry(
    written: str,
    toned: str,
    meaning: str,
    bare: Optional[str] = None,
    tones: Optional[str] = None,
) -> VocabularyEntry:
    """Create an entry with its ID and derived transcription fields."""
    written = written.strip()
    toned = toned.strip()
    derived_bare, derived_tones = split_pinyin(toned)
    return VocabularyEntry(
        entry_id=generate_entry_id(written, toned),
        written=written,
        toned=toned,
        meaning=meaning.strip(),
        bare=derived_bare if bare is None else bare,
        tones=derived_tones if tones is None else tones,
    )


def merge_entries(
    existing: List[VocabularyEntry], incoming: List[VocabularyEntry]
) -> Tuple[List[VocabularyEntry], int, int]:
    """Merge re-imported entries into a wordlist.

    An incoming entry whose ID is already present replaces it in place;
    others are appended. Returns the merged list with new and updated counts.
    """
    merged: Dict[str, VocabularyEntry] = {entry.entry_id: entry for entry in existing}
    new_count = 0
    updated_count = 0
    for entry in incoming:
        if entry.entry_id in merged:
            updated_count += 1
        else:
            new_count += 1
        merged[entry.entry_id] = entry
    logger.info(f"Merged wordlist: {new_count} new, {updated_count} updated, {len(merged)} total")
    return list(merged.values()), new_count, updated_count
