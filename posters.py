from typing import Any, Dict, Optional

import structlog
from fastapi import HTTPException, UploadFile

from database import Repositories
from uploads import POSTER_IMAGE_LIMIT, ImageStore

logger = structlog.get_logger(__name__)


class PosterService:
    """The storefront shows a single promotional poster at a time."""

    def __init__(self, repos: Repositories, images: ImageStore):
        self.posters = repos.posters
        self.images = images

    def current(self) -> Optional[Dict[str, Any]]:
        return self.posters.find_one()

    def upload(self, file: Optional[UploadFile]) -> Dict[str, Any]:
        if file is None or not file.filename:
            raise HTTPException(status_code=400, detail="Please upload an image.")
        path = self.images.save(file, "posters", "poster", POSTER_IMAGE_LIMIT)

        old = self.posters.find_one()
        if old:
            self.images.delete(old.get("image"))
            poster = self.posters.update(old["_id"], {"image": path})
        else:
            poster = self.posters.insert({"image": path})
        logger.info("poster_uploaded", image=path)
        return poster

    def delete(self) -> None:
        poster = self.posters.find_one()
        if not poster:
            raise HTTPException(status_code=404, detail="No poster found to delete.")
        self.images.delete(poster.get("image"))
        self.posters.delete(poster["_id"])
