from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import uvicorn
import os

from config import load_settings
from networks import NETWORKS
from update_sheet import run_once
from utils import RunTimeout, short_error

app = FastAPI()

ENV_FILE = os.environ.get("ENV_FILE", ".env")
SCHEDULED_HEADER = os.environ.get("SCHEDULED_HEADER", "x-scheduled")


@app.post("/api/update-sheet")
async def update_sheet(request: Request):
    # Only the scheduler is allowed to trigger a run
    if not request.headers.get(SCHEDULED_HEADER):
        return JSONResponse(
            status_code=400,
            content={"message": "This function can only be triggered by a schedule."},
        )

    try:
        settings = load_settings(ENV_FILE)
    except Exception as e:
        print(f"Error: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to update data"})

    try:
        await run_once(settings)
    except RunTimeout as e:
        print(f"Error: {e}")
        return JSONResponse(status_code=504, content={"error": "Update timed out"})
    except Exception as e:
        print(f"Error: {short_error(e)}")
        return JSONResponse(status_code=500, content={"error": "Failed to update data"})

    return {"message": "Data updated successfully"}


@app.get("/api/networks")
def get_networks():
    return [
        {"name": t.name, "dashboard_url": t.dashboard_url, "sheet_range": t.sheet_range}
        for t in NETWORKS.values()
    ]


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
