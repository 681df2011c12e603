import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from skillstack.api.routes import skills, technologies

app = FastAPI(title="SkillStack API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.getenv("SKILLSTACK_CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(skills.router)
app.include_router(technologies.router)
