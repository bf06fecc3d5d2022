"""Enrollment store: reference embeddings per known identity, built once at startup."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np
import pandas as pd

from interaction.errors import EnrollmentError, NotFound
from interaction.io_utils import ensure_dir, list_images, load_yaml
from interaction.types import Identity, IdentityRecord, ImageSource, as_embedding

LOGGER = logging.getLogger("interaction.recognition.enrollment")


def _load_image(source: ImageSource) -> Optional[np.ndarray]:
    if isinstance(source, np.ndarray):
        return source
    image = cv2.imread(str(source))
    if image is None:
        LOGGER.warning("Unable to read image: %s", source)
        return None
    return image


def iter_identity_directory(root: Path) -> Iterable[IdentityRecord]:
    """Yield one record per person subdirectory; the folder name is both id and name."""
    for person_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        images = tuple(list_images(person_dir))
        if not images:
            LOGGER.warning("Identity folder %s contains no images", person_dir)
        yield IdentityRecord(id=person_dir.name, name=person_dir.name, image_sources=images)


def load_roster(path: Path) -> List[IdentityRecord]:
    """Read identity records from a YAML or CSV roster.

    YAML rosters hold a list under ``identities`` with ``id``, ``name`` and
    ``images`` (a path or list of paths). CSV rosters have ``id``, ``name`` and
    ``image`` columns; several images are separated by ``;``. Relative image
    paths resolve against the roster's directory.
    """
    base_dir = path.parent
    rows: List[Dict] = []
    if path.suffix.lower() in {".yaml", ".yml"}:
        rows = list(load_yaml(path).get("identities", []))
    elif path.suffix.lower() == ".csv":
        df = pd.read_csv(path, dtype=str).fillna("")
        for _, row in df.iterrows():
            images = [part.strip() for part in row.get("image", "").split(";") if part.strip()]
            rows.append({"id": row["id"], "name": row.get("name") or row["id"], "images": images})
    else:
        raise ValueError(f"Unsupported roster format: {path}")

    records: List[IdentityRecord] = []
    for row in rows:
        images = row.get("images") or []
        if isinstance(images, str):
            images = [images]
        resolved = tuple(p if Path(p).is_absolute() else base_dir / p for p in map(Path, images))
        identity_id = str(row["id"])
        records.append(IdentityRecord(id=identity_id, name=str(row.get("name") or identity_id), image_sources=resolved))
    LOGGER.info("Loaded roster %s: %d identities", path, len(records))
    return records


class EnrollmentStore:
    """Holds enrolled identities in enrollment order; read-only once loaded."""

    def __init__(self, extractor=None) -> None:
        self.extractor = extractor
        self._identities: Dict[str, Identity] = {}
        self._known_ids: Tuple[str, ...] = ()
        self._ready = threading.Event()

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def identities(self) -> List[Identity]:
        return list(self._identities.values())

    @property
    def known_ids(self) -> Tuple[str, ...]:
        """Every id supplied by the identity directory, including dropped ones."""
        return self._known_ids

    def __len__(self) -> int:
        return len(self._identities)

    def __contains__(self, identity_id: object) -> bool:
        return identity_id in self._identities

    def load(self, records: Iterable[IdentityRecord]) -> List[Identity]:
        """Extract reference embeddings for every record and mark the store ready."""
        if self.extractor is None:
            raise RuntimeError("EnrollmentStore.load requires an embedding extractor")
        enrolled: Dict[str, Identity] = {}
        known: List[str] = []
        for record in records:
            known.append(record.id)
            if record.id in enrolled:
                LOGGER.warning("Duplicate identity id %s in directory; keeping first", record.id)
                continue
            embeddings: List[np.ndarray] = []
            for source in record.image_sources:
                image = _load_image(source)
                if image is None:
                    continue
                embedding = self.extractor.extract(image)
                if embedding is None:
                    LOGGER.debug("No face found for %s in %s", record.id, _describe(source))
                    continue
                embeddings.append(as_embedding(embedding))
            if not embeddings:
                LOGGER.warning(
                    "Dropping identity %s (%s): no extractable embedding in %d image(s)",
                    record.id,
                    record.name,
                    len(record.image_sources),
                )
                continue
            enrolled[record.id] = Identity(
                id=record.id,
                display_name=record.name,
                reference_embeddings=tuple(embeddings),
            )
        return self._install(enrolled, known)

    def _install(self, enrolled: Dict[str, Identity], known: Sequence[str]) -> List[Identity]:
        if not enrolled:
            raise EnrollmentError(f"No identities enrolled out of {len(known)} record(s)")
        dims = {emb.shape[0] for identity in enrolled.values() for emb in identity.reference_embeddings}
        if len(dims) > 1:
            raise EnrollmentError(f"Reference embeddings have mixed dimensions: {sorted(dims)}")
        self._identities = enrolled
        self._known_ids = tuple(dict.fromkeys(known))
        self._ready.set()
        LOGGER.info(
            "Enrollment ready: %d/%d identities, %d reference embeddings",
            len(enrolled),
            len(self._known_ids),
            sum(identity.num_references for identity in enrolled.values()),
        )
        return self.identities

    def get(self, identity_id: str) -> Tuple[np.ndarray, ...]:
        """Return the reference embeddings of an enrolled identity."""
        identity = self._identities.get(identity_id)
        if identity is None:
            raise NotFound(f"Identity {identity_id!r} is not enrolled")
        return identity.reference_embeddings

    def save_parquet(self, parquet_path: Path) -> Path:
        """Persist enrolled references so later runs can skip extraction."""
        rows = [
            {
                "id": identity.id,
                "name": identity.display_name,
                "ref_index": idx,
                "embedding": embedding.astype(np.float32).tolist(),
            }
            for identity in self._identities.values()
            for idx, embedding in enumerate(identity.reference_embeddings)
        ]
        if not rows:
            raise EnrollmentError("Nothing to save: enrollment is empty")
        ensure_dir(parquet_path.parent)
        df = pd.DataFrame(rows)
        df.to_parquet(parquet_path, index=False)
        LOGGER.info("Saved enrollment: %d identities -> %s", len(self._identities), parquet_path)
        return parquet_path

    @classmethod
    def from_parquet(cls, parquet_path: Path, known_ids: Optional[Sequence[str]] = None) -> "EnrollmentStore":
        df = pd.read_parquet(parquet_path)
        grouped: Dict[str, Dict] = {}
        for _, row in df.sort_values(["ref_index"], kind="stable").iterrows():
            entry = grouped.setdefault(str(row["id"]), {"name": str(row["name"]), "embeddings": []})
            entry["embeddings"].append(_normalize_embedding(row["embedding"]))
        # restore enrollment order from first appearance in the file
        order = list(dict.fromkeys(str(v) for v in df["id"].tolist()))
        enrolled = {
            identity_id: Identity(
                id=identity_id,
                display_name=grouped[identity_id]["name"],
                reference_embeddings=tuple(grouped[identity_id]["embeddings"]),
            )
            for identity_id in order
        }
        store = cls()
        store._install(enrolled, list(known_ids) if known_ids is not None else order)
        return store


def _describe(source: ImageSource) -> str:
    if isinstance(source, np.ndarray):
        return f"<array {source.shape}>"
    return str(source)


def _normalize_embedding(raw) -> np.ndarray:
    """Convert parquet-loaded embedding column into a 1D float32 vector."""
    if isinstance(raw, np.ndarray):
        if raw.dtype == object or raw.ndim > 1:
            parts = [np.asarray(part, dtype=np.float32).ravel() for part in raw]
            arr = np.concatenate(parts) if parts else np.empty((0,), dtype=np.float32)
        else:
            arr = raw.astype(np.float32)
    else:
        arr = np.asarray(raw, dtype=np.float32)
    return arr.reshape(-1).astype(np.float32)
