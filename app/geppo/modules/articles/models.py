from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.geppo.models import Base
from app.geppo import workflow
from app.geppo.workflow import ReportState, Shipped

if TYPE_CHECKING:
    from app.geppo.models import User
    from app.geppo.modules.tags.models import Tag


TITLE_MAX_LENGTH = 100
BODY_MAX_LENGTH = 5000


class Article(Base):
    __tablename__ = "articles"
    __table_args__ = (Index("idx_articles_shipped_at", "shipped_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title: Mapped[str | None] = mapped_column(String(TITLE_MAX_LENGTH), nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    # NULL while wip
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    user: Mapped["User"] = relationship(lazy="selectin")
    tags: Mapped[list["Tag"]] = relationship(
        secondary="article_tags",
        order_by="Tag.id",
        lazy="selectin",
    )
    comments: Mapped[list["ArticleComment"]] = relationship(
        back_populates="article",
        cascade="all, delete-orphan",
        order_by="ArticleComment.id",
        lazy="selectin",
    )

    @property
    def state(self) -> ReportState:
        return workflow.state_of(self)

    @property
    def shipped(self) -> bool:
        return isinstance(self.state, Shipped)

    def ship(self) -> bool:
        return workflow.ship(self)

    def browseable(self, viewer: "User | None") -> bool:
        return workflow.is_browseable(self, viewer.id if viewer else None)

    def assign_relational_params(self, wip: bool, tags: list["Tag"]) -> bool:
        """Ship unless `wip`, then replace the tag set. Returns True on a wip -> shipped move."""
        newly_shipped = False if wip else self.ship()
        self.tags = list(tags)
        return newly_shipped


class ArticleTag(Base):
    __tablename__ = "article_tags"
    __table_args__ = (UniqueConstraint("article_id", "tag_id", name="uq_article_tags_article_tag"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    article_id: Mapped[int] = mapped_column(ForeignKey("articles.id", ondelete="CASCADE"), nullable=False, index=True)
    tag_id: Mapped[int] = mapped_column(ForeignKey("tags.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, server_default=func.current_timestamp()
    )


class ArticleComment(Base):
    __tablename__ = "article_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    article_id: Mapped[int] = mapped_column(ForeignKey("articles.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    article: Mapped[Article] = relationship(back_populates="comments", lazy="selectin")
    user: Mapped["User"] = relationship(lazy="selectin")
