from .expiration_job import (  # noqa: F401
    build_warranty_scheduler,
    run_warranty_expiration_once,
    start_warranty_expiration_scheduler,
)
