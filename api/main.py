from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
import logging, uuid

from tender_generation.client import BatchGenerationClient
from tender_generation.orchestrator import parallel_generate_documents
from tender_generation.persistence import (
    InMemoryStatusStore, apply_run_result, mark_in_progress,
)
from tender_generation.schemas import ProgressEvent

logger = logging.getLogger(__name__)

app = FastAPI()
app.add_middleware(CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"], allow_headers=["*"])

jobs = {}  # job_id -> {status, progress, message, project_id, items, result}
statuses = InMemoryStatusStore()


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    work_package_ids: List[str] = Field(..., alias="workPackageIds")
    instructions: Optional[str] = None
    max_batch_size: Optional[int] = Field(default=None, alias="maxBatchSize", ge=1)
    concurrency: Optional[int] = Field(default=None, ge=1)


def make_client() -> BatchGenerationClient:
    return BatchGenerationClient()


def _new_job(project_id: str, req: GenerateRequest) -> dict:
    job_id = str(uuid.uuid4())[:8]
    jobs[job_id] = {
        "job_id": job_id, "project_id": project_id,
        "status": "queued", "progress": 0, "message": "Queued",
        "total": len(req.work_package_ids),
        "items": {wp_id: "queued" for wp_id in req.work_package_ids},
        "request": req.model_dump(by_alias=True),
        "result": None,
    }
    return jobs[job_id]


async def run_job(job_id: str, req: GenerateRequest):
    job = jobs[job_id]
    done = 0

    def on_progress(event: ProgressEvent):
        nonlocal done
        job["items"][event.work_package_id] = event.state
        if event.state in ("success", "error"):
            done += 1
            job["progress"] = int(100 * done / max(job["total"], 1))
        job["status"] = "running"
        job["message"] = f"{done} of {job['total']} finished"

    mark_in_progress(statuses, req.work_package_ids)
    try:
        async with make_client() as client:
            result = await parallel_generate_documents(
                job["project_id"], req.work_package_ids,
                instructions=req.instructions,
                max_batch_size=req.max_batch_size,
                concurrency=req.concurrency,
                on_progress=on_progress,
                client=client,
            )
    except Exception as e:
        logger.exception("Job %s crashed", job_id)
        job["status"] = "error"
        job["message"] = str(e)
        for wp_id in req.work_package_ids:
            statuses.set_status(wp_id, "pending")
        return

    apply_run_result(statuses, result)
    job["progress"] = 100
    job["status"] = "done"
    job["result"] = result.model_dump(by_alias=True)
    job["message"] = f"Complete — {result.summary()}"


@app.post("/projects/{project_id}/generate")
async def generate(project_id: str, req: GenerateRequest, background_tasks: BackgroundTasks):
    if not req.work_package_ids:
        raise HTTPException(status_code=400, detail="workPackageIds array is required")
    job = _new_job(project_id, req)
    background_tasks.add_task(run_job, job["job_id"], req)
    return {"job_id": job["job_id"], "total": job["total"]}

@app.get("/jobs/{job_id}/status")
def get_status(job_id: str):
    if job_id not in jobs:
        raise HTTPException(status_code=404, detail="not found")
    return {k: v for k, v in jobs[job_id].items() if k != "result"}

@app.get("/jobs/{job_id}/result")
def get_result(job_id: str):
    job = jobs.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="not found")
    if job["status"] != "done":
        raise HTTPException(status_code=409, detail="not ready")
    return job["result"]

@app.post("/jobs/{job_id}/retry")
async def retry_failed(job_id: str, background_tasks: BackgroundTasks):
    job = jobs.get(job_id)
    if not job or job["status"] != "done":
        raise HTTPException(status_code=409, detail="not ready")
    failed_ids = [f["workPackageId"] for f in job["result"]["failed"]]
    if not failed_ids:
        raise HTTPException(status_code=400, detail="nothing to retry")
    req = GenerateRequest.model_validate({**job["request"], "workPackageIds": failed_ids})
    new_job = _new_job(job["project_id"], req)
    background_tasks.add_task(run_job, new_job["job_id"], req)
    return {"job_id": new_job["job_id"], "total": new_job["total"]}

@app.get("/jobs")
def list_jobs():
    return [{k: v for k, v in job.items() if k != "result"} for job in jobs.values()]

@app.delete("/jobs/{job_id}")
def delete_job(job_id: str):
    if job_id in jobs:
        del jobs[job_id]
    return {"deleted": job_id}

@app.get("/work-packages/{work_package_id}/status")
def get_work_package_status(work_package_id: str):
    status = statuses.get_status(work_package_id)
    if status is None:
        raise HTTPException(status_code=404, detail="not found")
    return {"workPackageId": work_package_id, "status": status}
