import os
import sys

# Force CPU-only mode for tests (avoids CUDA compatibility issues)
os.environ["CUDA_VISIBLE_DEVICES"] = ""

# Keep a developer's real key out of the test run
os.environ.pop("MEMSEARCH_REMOTE_API_KEY", None)

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))
