from fastapi import FastAPI

from seo_billing import config
from seo_billing.database import Base, engine
from seo_billing.logging_config import setup_logging
from seo_billing.routes import router

setup_logging(config.LOG_LEVEL, config.LOG_FILE)

app = FastAPI(title="SEO Billing Service")

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.get("/health")
def health():
    return {"status": "ok"}
