from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from shuttle_guard.sync import SyncScheduler, TripReconciler
from shuttle_guard.webhook import router


@asynccontextmanager
async def lifespan(app: FastAPI):
    reconciler = TripReconciler()
    scheduler = SyncScheduler(reconciler)
    app.state.sync_scheduler = scheduler
    scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()
        await reconciler.client.close()


app = FastAPI(title="Shuttle-Guard", lifespan=lifespan)
app.include_router(router)


@app.get("/health")
async def health():
    scheduler = getattr(app.state, "sync_scheduler", None)
    return {"ok": True, "sync_running": bool(scheduler and scheduler.is_running)}


if __name__=="__main__":
    uvicorn.run("shuttle_guard.main:app", host="0.0.0.0", port=8000, reload=False)
