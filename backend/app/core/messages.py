"""User-facing messages (Khmer, like the web frontend)."""

URL_MISSING = "URL មិនត្រូវបានផ្តល់!"
URL_OR_FORMAT_MISSING = "URL ឬ format មិនត្រូវបានផ្តល់!"
METADATA_INCOMPLETE = "មិនអាចទាញ metadata បាន!"

# Prefixes; the underlying reason is appended after ": "
INFO_FAILED = "មិនអាចទាញព័ត៌មានបាន"
DOWNLOAD_FAILED = "មិនអាចទាញយកបាន"

# Branch-specific stream failures
AUDIO_STREAM_FAILED = "កំហុសក្នុងការទាញយក MP3!"
VIDEO_STREAM_FAILED = "កំហុសក្នុងការទាញយកវីដេអូ!"


def with_reason(prefix: str, reason: object) -> str:
    return f"{prefix}: {reason}"
