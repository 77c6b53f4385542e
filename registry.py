"""
Listing registry: creation, browsing and the available -> sold lifecycle.

A listing is owned by whoever holds its secret key. The key is minted at
creation, handed back exactly once, and is the only proof accepted for
marking the listing sold (or deleting it, when deletion is enabled).
"""

import hmac
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING

from database import DocumentStore
from errors import Forbidden, NotFound, StoreUnavailable, ValidationError
from schemas import ALL_CATEGORIES, CreatedListing, Listing, ListingCreate, ListingUpdate

logger = logging.getLogger(__name__)

# "available" < "sold", so ascending status puts unsold items first
LISTING_SORT = [("status", ASCENDING), ("created_at", DESCENDING)]

DELETION_DISABLED = "Deleting products is disabled. Use 'mark as sold' instead."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_secret_key() -> str:
    return secrets.token_hex(6)


def project(doc: Dict[str, Any]) -> Listing:
    return Listing.model_validate(doc)


def _parse(model, data):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


class ListingRegistry:
    def __init__(
        self,
        store: DocumentStore,
        allow_deletion: bool = False,
        degrade_reads: bool = True,
        clock: Callable[[], datetime] = utcnow,
        secret_factory: Callable[[], str] = new_secret_key,
    ):
        self.store = store
        self.allow_deletion = allow_deletion
        self.degrade_reads = degrade_reads
        self.clock = clock
        self.secret_factory = secret_factory

    def list(self, category: Optional[str] = None) -> List[Listing]:
        filter_q = {}
        if category and category != ALL_CATEGORIES:
            filter_q["category"] = category
        try:
            docs = self.store.find(filter_q, sort=LISTING_SORT)
        except StoreUnavailable:
            if not self.degrade_reads:
                raise
            logger.error("Listing lookup failed, serving empty result (category=%s)", category)
            return []

        listings = []
        for doc in docs:
            try:
                listings.append(project(doc))
            except PydanticValidationError as e:
                logger.warning("Skipping malformed listing %s: %s", doc.get("id"), e)
        return listings

    def _load(self, listing_id: str) -> Dict[str, Any]:
        if not self.store.is_valid_id(listing_id):
            raise NotFound("Product not found")
        doc = self.store.find_by_id(listing_id)
        if doc is None:
            raise NotFound("Product not found")
        return doc

    def _project(self, doc: Dict[str, Any]) -> Listing:
        # A stored listing that breaks the model rules is reported as missing
        try:
            return project(doc)
        except PydanticValidationError as e:
            logger.warning("Malformed listing %s treated as not found: %s", doc.get("id"), e)
            raise NotFound("Product not found")

    def get_by_id(self, listing_id: str) -> Listing:
        try:
            doc = self._load(listing_id)
        except StoreUnavailable:
            if not self.degrade_reads:
                raise
            logger.error("Listing %s lookup failed, reporting not found", listing_id)
            raise NotFound("Product not found")
        return self._project(doc)

    def create(self, data: Union[ListingCreate, Mapping[str, Any]]) -> CreatedListing:
        listing = _parse(ListingCreate, data)
        secret_key = self.secret_factory()

        document = listing.to_document()
        document.update(
            status="available",
            sold_at=None,
            created_at=self.clock(),
            secret_key=secret_key,
        )
        listing_id = self.store.insert(document)
        document["id"] = listing_id
        logger.info("Created listing %s in %s", listing_id, listing.category)
        return CreatedListing.model_validate(document)

    def update(self, listing_id: str, data: Union[ListingUpdate, Mapping[str, Any]]) -> Listing:
        # No secret check here; only mark_sold and delete are gated
        changes = _parse(ListingUpdate, data).changes()
        if not self.store.is_valid_id(listing_id):
            raise NotFound("Product not found")
        if not changes:
            return self._project(self._load(listing_id))

        updated = self.store.update_by_id(listing_id, changes)
        if updated is None:
            raise NotFound("Product not found")
        logger.info("Updated listing %s (%s)", listing_id, ", ".join(sorted(changes)))
        return self._project(updated)

    def _authorize(self, listing_id: str, secret_key: Optional[str]) -> Dict[str, Any]:
        doc = self._load(listing_id)
        stored = doc.get("secret_key") or ""
        supplied = secret_key or ""
        if not stored or not hmac.compare_digest(stored.encode("utf-8"), supplied.encode("utf-8")):
            logger.warning("Rejected secret key for listing %s", listing_id)
            raise Forbidden("Invalid secret key")
        return doc

    def mark_sold(self, listing_id: str, secret_key: str) -> Listing:
        self._authorize(listing_id, secret_key)
        updated = self.store.update_by_id(listing_id, {"status": "sold", "sold_at": self.clock()})
        if updated is None:
            raise NotFound("Product not found")
        logger.info("Listing %s marked as sold", listing_id)
        return self._project(updated)

    def delete(self, listing_id: str, secret_key: Optional[str]) -> None:
        if not self.allow_deletion:
            logger.warning("Delete requested for %s while deletion is disabled", listing_id)
            raise Forbidden(DELETION_DISABLED)
        self._authorize(listing_id, secret_key)
        if not self.store.delete_by_id(listing_id):
            raise NotFound("Product not found")
        logger.info("Deleted listing %s", listing_id)
