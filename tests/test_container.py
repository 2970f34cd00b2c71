from postchat.config import Settings
from postchat.container import build_container
from postchat.jobs import EMBED_POST_TASK
from postchat.service import ChatOrchestrator


def test_build_container_wires_components_without_connecting():
    settings = Settings(
        _env_file=None,
        DATABASE_URL="postgresql+psycopg2://u:p@localhost:5432/postchat",
        REDIS_URL="redis://localhost:6379/0",
        TOP_K=5,
        AI_HOST="http://gen.test",
    )

    container = build_container(settings)

    assert isinstance(container.service, ChatOrchestrator)
    assert container.service.retrieval.top_k == 5
    assert container.service.generator.url == "http://gen.test/api/generate"
    assert EMBED_POST_TASK in container.celery_app.tasks
    assert container.tracer.trace("t").enabled is False
