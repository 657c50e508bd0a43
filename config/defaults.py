"""Default pipeline settings."""

DEFAULTS = {
    "model": "gemini-3-pro-image-preview",
    "aspect_ratio": "1:1",
    "max_workers": 3,           # one thread per dependent stage
    "port": 5001,
    "api_key_env": ["GEMINI_API_KEY", "GOOGLE_API_KEY"],
}
