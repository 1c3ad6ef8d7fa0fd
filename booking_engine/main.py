"""Main entry point for the webhook server"""
import logging
import os

from dotenv import load_dotenv

# Load environment variables FIRST before importing modules that need them
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from .app_factory import create_app  # noqa: E402

app = create_app()

__all__ = ['app']

if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8080))
    logger.info(f"Starting server on port {port}")
    uvicorn.run(app, host="0.0.0.0", port=port)
