import os

import uvicorn

from coal_settlement.main import app

if __name__ == "__main__":
    uvicorn.run(
        "coal_settlement.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level="info",
    )
