"""
Convergence engine for Variant Watcher.

Reconciles the variant files in the output folder with the source
images in the watched folder.  The filesystem is the only state: the
set of existing variants is checked again on every call, so repeated or
duplicate calls are harmless and a restart after any crash converges
to the same result.

Forward direction (``sync_create``): create every missing variant of a
source.  Reverse direction (``sync_delete``): remove every variant a
source could have produced.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from variant_sync.codec import Codec, Pipeline, write_atomic
from variant_sync.errors import CodecError, UnsupportedFormatError
from variant_sync.identity import identifier_for
from variant_sync.stats import SyncStats, SyncStatus
from variant_sync.variants import FIT_INSIDE, Variant, VariantMatrix

logger = logging.getLogger(__name__)

# Sources larger than this are downscaled once, before any cropping.
MAX_WIDTH = 3840
MAX_HEIGHT = 2160


@dataclass
class CreateOutcome:
    """Result of one ``sync_create`` call."""
    source: Path
    identifier: str = ""
    status: SyncStatus = SyncStatus.IGNORED
    created: list[Path] = field(default_factory=list)
    existing: list[Path] = field(default_factory=list)
    failed: list[tuple[Path, str]] = field(default_factory=list)
    error: str = ""


@dataclass
class DeleteOutcome:
    """Result of one ``sync_delete`` call."""
    source: Path
    identifier: str = ""
    ignored: bool = False
    deleted: list[Path] = field(default_factory=list)
    absent: list[Path] = field(default_factory=list)
    failed: list[tuple[Path, str]] = field(default_factory=list)


class ConvergenceEngine:
    """
    Drives the output folder towards the expected variant set.

    Parameters
    ----------
    matrix : VariantMatrix
        The expected variants and their output paths.
    codec : Codec
        Decoder for source images.
    stats : SyncStats
        Counters owned by the caller; updated by every ``sync_create``.
    max_width, max_height : int
        Bounding box for the one-off downscale of oversized sources.
    """

    def __init__(
        self,
        matrix: VariantMatrix,
        codec: Codec,
        stats: SyncStats,
        max_width: int = MAX_WIDTH,
        max_height: int = MAX_HEIGHT,
    ):
        self.matrix = matrix
        self.codec = codec
        self.stats = stats
        self.max_width = max_width
        self.max_height = max_height
        self._output_root = Path(os.path.abspath(matrix.output_dir)).resolve()

    # ---- guard ----

    def is_output_path(self, path: str | os.PathLike[str]) -> bool:
        """Return True if *path* is the output folder or lies inside it."""
        resolved = Path(os.path.abspath(path)).resolve()
        return resolved == self._output_root or self._output_root in resolved.parents

    # ---- forward ----

    def sync_create(self, source_path: str | os.PathLike[str]) -> CreateOutcome:
        """Create every missing variant for *source_path*."""
        source = Path(source_path)
        outcome = CreateOutcome(source=source)
        if self.is_output_path(source):
            logger.debug("Ignoring %s: inside the output folder", source)
            return outcome

        self.stats.mark_observed()
        outcome.identifier = identifier_for(source)

        if not source.is_file():
            logger.warning("Source file vanished before processing: %s", source)
            outcome.status = SyncStatus.VANISHED
            self.report()
            return outcome

        variants = self.matrix.variants(outcome.identifier)
        missing = [v for v in variants if not v.path.exists()]
        outcome.existing = [v.path for v in variants if v not in missing]

        if not missing:
            logger.info(
                "Skipping %s: all %d output variants already exist.",
                source.name, len(variants),
            )
            outcome.status = SyncStatus.SKIPPED
            self._finish(outcome)
            return outcome

        logger.info(
            "Processing %s (id %s, %d of %d variants missing)",
            source.name, outcome.identifier, len(missing), len(variants),
        )
        try:
            base = self._decode_base(source)
        except CodecError as exc:
            logger.error("Failed to load %s: %s", source.name, exc)
            if isinstance(exc, UnsupportedFormatError):
                logger.warning(
                    "  Pillow has no decoder for this file; formats such as HEIC "
                    "need an extra Pillow plugin."
                )
            outcome.error = str(exc)
            outcome.status = SyncStatus.ERRORED
            self._finish(outcome)
            return outcome

        for variant in missing:
            self._create_variant(base, variant, outcome)

        if outcome.failed:
            outcome.status = SyncStatus.ERRORED
            logger.error(
                "Finished %s with %d failed variant(s).", source.name, len(outcome.failed)
            )
        elif outcome.created:
            outcome.status = SyncStatus.CONVERGED
            logger.info(
                "Processed %s: %d new variant(s) created.", source.name, len(outcome.created)
            )
        else:
            outcome.status = SyncStatus.SKIPPED
            logger.info("No new variants needed for %s.", source.name)
        self._finish(outcome)
        return outcome

    def _decode_base(self, source: Path) -> Pipeline:
        """Decode once and apply the global downscale bound."""
        base = self.codec.decode(source)
        if base.width > self.max_width or base.height > self.max_height:
            logger.info(
                "  %s (%dx%d) exceeds %dx%d, downscaling",
                source.name, base.width, base.height, self.max_width, self.max_height,
            )
            base = base.resize(
                width=self.max_width,
                height=self.max_height,
                fit=FIT_INSIDE,
                never_enlarge=True,
            )
        return base

    def _create_variant(self, base: Pipeline, variant: Variant, outcome: CreateOutcome) -> None:
        # Another trigger for the same identifier may have written it meanwhile.
        if variant.path.exists():
            outcome.existing.append(variant.path)
            return
        crop = variant.crop
        try:
            branch = base
            if not crop.is_passthrough:
                branch = base.resize(
                    width=crop.width,
                    height=crop.height,
                    fit=crop.fit,
                    never_enlarge=True,
                )
            data = branch.encode(variant.encoding)
            write_atomic(variant.path, data)
        except (CodecError, OSError) as exc:
            logger.error(
                "  Error creating %s for %s: %s", variant.filename, outcome.source.name, exc
            )
            outcome.failed.append((variant.path, str(exc)))
            return
        logger.info("  Created %s", variant.filename)
        outcome.created.append(variant.path)

    def _finish(self, outcome: CreateOutcome) -> None:
        self.stats.record(outcome.status)
        self.report()

    # ---- reverse ----

    def sync_delete(self, source_path: str | os.PathLike[str]) -> DeleteOutcome:
        """Remove every variant that *source_path* could have produced."""
        source = Path(source_path)
        outcome = DeleteOutcome(source=source)
        if self.is_output_path(source):
            logger.debug("Ignoring removal of %s: inside the output folder", source)
            outcome.ignored = True
            return outcome

        outcome.identifier = identifier_for(source)
        logger.info("Source %s deleted, removing its variants", source.name)
        for path in self.matrix.expected_paths(outcome.identifier):
            try:
                path.unlink()
            except FileNotFoundError:
                outcome.absent.append(path)
                continue
            except OSError as exc:
                logger.error("  Error deleting %s: %s", path.name, exc)
                outcome.failed.append((path, str(exc)))
                continue
            logger.info("  Deleted %s", path.name)
            outcome.deleted.append(path)

        if outcome.deleted:
            logger.info("Deleted %d variant(s) for %s.", len(outcome.deleted), source.name)
        if outcome.failed:
            logger.error(
                "%d error(s) while deleting variants for %s.", len(outcome.failed), source.name
            )
        if not outcome.deleted and not outcome.failed:
            logger.info("No output variants to delete for %s.", source.name)
        self.report()
        return outcome

    # ---- reporting ----

    def report(self) -> None:
        """Log the current cumulative counters."""
        for line in self.stats.snapshot().lines():
            logger.info(line)
