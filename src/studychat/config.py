"""Central configuration for paths and constants."""

import os
from pathlib import Path

# Data directory; override with STUDYCHAT_DATA_DIR env var
DATA_DIR = Path(
    os.environ.get("STUDYCHAT_DATA_DIR", str(Path.home() / ".studychat"))
)

# Storage paths
KV_PATH = DATA_DIR / "studychat.db"
IMAGE_CACHE_DIR = DATA_DIR / "images"

# Key-value layout
CONVERSATION_KEY_PREFIX = "conv_"
INDEX_KEY = "conv_list"

# Completion service
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
CHAT_MODEL = os.environ.get("STUDYCHAT_CHAT_MODEL", "gpt-3.5-turbo")
VISION_MODEL = os.environ.get("STUDYCHAT_VISION_MODEL", "gpt-4o")

# Reveal cadence
REVEAL_INTERVAL_SECONDS = int(os.environ.get("STUDYCHAT_REVEAL_INTERVAL_MS", "40")) / 1000
REVEAL_CHUNK_SIZE = 2  # Characters appended per tick

# Transient badges (liked / disliked / copied)
FEEDBACK_DISMISS_SECONDS = 2.0

# In-band fallbacks
ERROR_REPLY = "Error generating response"
UNTITLED = "Untitled"
NO_RESPONSE = "No response"

TITLE_INSTRUCTION = "Generate a concise title for this conversation in 5-10 words."
SCAN_INSTRUCTION = (
    "Analyze the image and solve the question in it step by step. "
    "Use markdown format for the response. For all mathematical expressions, "
    "use proper LaTeX syntax (e.g., \\frac{1}{2} for fractions, \\sqrt{x} for "
    "square roots, no ASCII shorthand like frac or sqrt). Always wrap inline "
    "math in single dollars $...$ and display math in double dollars $$...$$."
)
