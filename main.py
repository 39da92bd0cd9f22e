"""
Main entry point for the upload service.
"""

import uvicorn

if __name__ == "__main__":
    uvicorn.run("upload_service.app.api:app", host="0.0.0.0", port=8000, reload=True)
