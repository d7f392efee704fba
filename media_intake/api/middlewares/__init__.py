from media_intake.api.middlewares.ray_id import ray_id_middleware


__all__ = [
    "ray_id_middleware",
]
