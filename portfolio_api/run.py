"""Start the API server with uvicorn."""
import uvicorn

from portfolio_api.config import API_HOST, API_PORT

if __name__ == "__main__":
    uvicorn.run(
        "portfolio_api.main:app",
        host=API_HOST,
        port=API_PORT,
        reload=True,
    )
