"""
Catalogue repository: sources, compilations and their membership.

This is the management side of the storage. The pipeline stages only read
what it writes; creating a compilation always creates its status row too.
"""

from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from rssmix.config import PublicConfig
from rssmix.logger import get_logger
from rssmix.models import (
    CompilationCreate,
    CompilationModel,
    CompilationResponse,
    CompilationStatusModel,
    CompilationUpdate,
    SourceModel,
    compilation_content,
)
from rssmix.utils.hash_utils import generate_id, subdirs
from rssmix.utils.url_utils import split_url

logger = get_logger(__name__)


def join_patterns(patterns: Optional[list[str]]) -> Optional[str]:
    """Store a pattern list as the comma-joined column value."""
    patterns = [p for p in (patterns or []) if p]
    return ",".join(patterns) if patterns else None


class CatalogueRepository:
    """Repository for source and compilation CRUD operations."""

    def __init__(self, session: Session, public: Optional[PublicConfig] = None) -> None:
        """Initialize repository with a database session.

        Args:
            session: SQLAlchemy Session instance
            public: Public url and output layout used for new compilations
        """
        self.session = session
        self.public = public or PublicConfig()

    # Sources

    def find_source(self, url: str) -> Optional[SourceModel]:
        """Get a source by url.

        Args:
            url: Feed url in any form accepted by split_url

        Returns:
            SourceModel instance or None
        """
        uschema, urn = split_url(url)
        return self.session.scalars(
            select(SourceModel).where(SourceModel.uschema == uschema, SourceModel.urn == urn)
        ).first()

    def get_or_create_source(self, url: str) -> SourceModel:
        """Get a source by url, adding it to the catalogue if needed.

        Raises:
            ValueError: If the url cannot be parsed
        """
        source = self.find_source(url)
        if source is not None:
            return source

        uschema, urn = split_url(url)
        source = SourceModel(uschema=uschema, urn=urn)
        self.session.add(source)
        self.session.flush()
        logger.info(f"New source {source.id} -> {source.url}")
        return source

    def cleanup_sources(self) -> int:
        """Delete sources that no compilation references.

        Returns:
            Number of deleted sources
        """
        referenced = select(compilation_content.c.source_id)
        orphans = list(
            self.session.scalars(select(SourceModel).where(SourceModel.id.not_in(referenced)))
        )
        for source in orphans:
            self.session.delete(source)
        self.session.flush()
        return len(orphans)

    # Compilations

    def get_compilation(self, compilation_id: str) -> Optional[CompilationModel]:
        """Get a compilation by id."""
        return self.session.get(CompilationModel, compilation_id)

    def public_url(self, compilation_id: str) -> str:
        """Build the public url a compilation is served from.

        Example:
            https://localhost/abcdefghjk.rss, or with subdirs=2
            https://localhost/a/b/abcdefghjk.rss
        """
        path = subdirs(compilation_id, self.public.subdirs)
        return f"{self.public.protocol}://{self.public.hostname}/{path}.rss"

    def output_path(self, compilation_id: str) -> str:
        """Build the local file a compilation is written to."""
        path = subdirs(compilation_id, self.public.subdirs)
        return str(Path(self.public.output_dir) / f"{path}.rss")

    def create_compilation(self, data: CompilationCreate) -> CompilationModel:
        """Create a compilation with its members and status row.

        Args:
            data: Compilation data

        Returns:
            Created CompilationModel instance

        Raises:
            ValueError: If one of the urls cannot be parsed
        """
        sources = [self.get_or_create_source(url) for url in data.urls]

        compilation_id = generate_id(self.public.id_length)
        while self.get_compilation(compilation_id) is not None:
            compilation_id = generate_id(self.public.id_length)

        compilation = CompilationModel(
            id=compilation_id,
            name=data.name,
            password=data.password or None,
            filter_inc=join_patterns(data.filter_inc),
            filter_exc=join_patterns(data.filter_exc),
            filename=self.output_path(compilation_id),
            url=self.public_url(compilation_id),
        )
        compilation.sources = list({source.id: source for source in sources}.values())
        compilation.status = CompilationStatusModel(id=compilation_id)

        self.session.add(compilation)
        self.session.flush()
        logger.info(f"New compilation -> {compilation_id}")
        return compilation

    def update_compilation(
        self, compilation_id: str, changes: CompilationUpdate
    ) -> Optional[CompilationModel]:
        """Apply a changeset to a compilation.

        Returns:
            Updated CompilationModel or None if it does not exist
        """
        compilation = self.get_compilation(compilation_id)
        if compilation is None:
            return None

        members = {source.id: source for source in compilation.sources}
        for url in changes.add:
            source = self.get_or_create_source(url)
            members[source.id] = source
        for url in changes.delete:
            source = self.find_source(url)
            if source is not None:
                members.pop(source.id, None)
        compilation.sources = list(members.values())

        if changes.password:
            compilation.password = changes.password
        if changes.name:
            compilation.name = changes.name
        if changes.filter_inc is not None:
            compilation.filter_inc = join_patterns(changes.filter_inc)
        if changes.filter_exc is not None:
            compilation.filter_exc = join_patterns(changes.filter_exc)

        self.session.flush()
        return compilation

    def delete_compilation(self, compilation_id: str) -> bool:
        """Delete a compilation together with its membership and status rows.

        Returns:
            True if a compilation was deleted
        """
        compilation = self.get_compilation(compilation_id)
        if compilation is None:
            return False

        # Membership rows go with the secondary relationship
        self.session.delete(compilation)
        self.session.flush()
        logger.info(f"Deleted compilation -> {compilation_id}")
        return True

    def check_password(self, compilation_id: str, password: Optional[str]) -> bool:
        """Check a password against the compilation's.

        Compilations without a password accept anything.
        """
        compilation = self.get_compilation(compilation_id)
        if compilation is None:
            return False
        if not compilation.password:
            return True
        return password == compilation.password

    def describe(self, compilation: CompilationModel) -> CompilationResponse:
        """Build the public view of a compilation."""
        status = compilation.status
        return CompilationResponse(
            id=compilation.id,
            name=compilation.name,
            url=compilation.url,
            urls=sorted(source.url for source in compilation.sources),
            updated=status.updated if status else None,
            published=status.published if status else None,
        )
