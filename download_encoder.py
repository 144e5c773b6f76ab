from pathlib import Path
import os

from huggingface_hub import snapshot_download
from tcode_search import config


def main() -> None:
    # Same HF env as the app, but force ONLINE for this script
    os.environ.update(config.HF_ENV_VARS)
    os.environ["HF_HUB_OFFLINE"] = "0"

    cache_root = Path(os.environ.get("HF_HOME", str(config.MODELS_DIR))).resolve()
    print(f"Using HF_HOME: {cache_root}")

    repo_id = config.BGE_ENCODER_MODEL
    print(f"\nDownloading repo: {repo_id}")
    local_path = snapshot_download(repo_id=repo_id, local_files_only=False)
    print(f"Cached at: {local_path}")

    # sentence-transformers needs its module config next to the weights
    marker = Path(local_path) / "modules.json"
    if marker.exists():
        print(f"  Found modules.json at: {marker}")
    else:
        print(f"  WARNING: modules.json NOT found in: {local_path}")

    print("\nFinished downloading the local encoder for offline use.")


if __name__ == "__main__":
    main()
