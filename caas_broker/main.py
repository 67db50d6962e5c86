from __future__ import annotations

import uvicorn
from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from caas_broker.api import broker
from caas_broker.api.utils import register_exception_handlers
from caas_broker.logging_config import configure_logging

configure_logging()

app = FastAPI(
    title="CaaS Service Broker",
    description="Service broker provisioning tenant-isolated Kubernetes namespaces",
    version="0.1.0",
)


@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
    """Redirect root URL to Swagger UI docs."""
    return RedirectResponse(url="/docs")


app.include_router(broker.router)

register_exception_handlers(app)

if __name__ == "__main__":
    uvicorn.run("caas_broker.main:app", host="0.0.0.0", port=8001, log_level="info", reload=True)
