"""Folder naming utilities: slug generation and deduplicated export dirs."""

import os
import re

MAX_DEDUP = 1000

_FILLER = {
    "a", "an", "the", "of", "with", "and", "in", "on", "sculpture",
    "statue", "clay", "make", "me", "please",
}


def slugify(text):
    """Convert text to a filesystem-safe slug."""
    text = text.lower().strip()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_-]+", "_", text)
    return text.strip("_")


def extract_subject_name(prompt):
    """Pull a short name for the sculpture's subject from the prompt."""
    words = re.sub(r"[^\w\s]", "", (prompt or "").lower()).split()
    meaningful = [w for w in words if w not in _FILLER]
    name = "_".join(meaningful[:3]) if meaningful else "sculpture"
    return slugify(name)


def get_output_dir(base_dir, prompt):
    """Return a directory under base_dir named after the prompt that does not exist yet."""
    base = os.path.join(base_dir, extract_subject_name(prompt))
    if not os.path.exists(base):
        return base

    # Dedup with _2, _3, etc.
    for counter in range(2, MAX_DEDUP + 2):
        candidate = f"{base}_{counter}"
        if not os.path.exists(candidate):
            return candidate

    raise RuntimeError(f"Too many existing exports (>{MAX_DEDUP}) for: {base}")


def stage_filename(rank, mime_type="image/png"):
    ext = {"image/jpeg": "jpg", "image/webp": "webp"}.get(mime_type, "png")
    return f"stage_{rank}.{ext}"
