"""Post generation job: create a draft ``post`` entity, optionally AI-written."""
from __future__ import annotations

import logging
from typing import Any, Optional

from contentjobs import config
from contentjobs.entity_ids import dedupe_id, slugify
from contentjobs.errors import GenerationError
from contentjobs.jobs.base import JobHandler
from contentjobs.jobs.progress import ProgressReporter
from contentjobs.models import Entity, GenerationJobData, GenerationResult
from contentjobs.parsers.frontmatter import render_markdown
from contentjobs.services.ai_generation import TemplateGenerator
from contentjobs.services.entity_service import EntityService

POST_GENERATION_JOB = "post-generation"
POST_ENTITY_TYPE = "post"

DEFAULT_PROMPT = (
    "Write an insightful blog post about a topic from my knowledge base "
    "that would be valuable to share"
)

SKELETON_CONTENT = """## Introduction

Add your introduction here.

## Main Content

Add your main content here.

## Conclusion

Add your conclusion here."""


class PostGenerationJobHandler(JobHandler[GenerationJobData, GenerationResult]):
    job_type = POST_GENERATION_JOB
    schema = GenerationJobData

    def __init__(
        self,
        entity_service: EntityService,
        generator: TemplateGenerator,
        *,
        author: str | None = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(logger or logging.getLogger("contentjobs.jobs.generation"))
        self.entity_service = entity_service
        self.generator = generator
        self.author = author if author is not None else config.AUTHOR_NAME

    async def process(
        self,
        data: GenerationJobData,
        job_id: str,
        progress: ProgressReporter,
    ) -> GenerationResult:
        title, content, excerpt = data.title, data.content, data.excerpt
        await progress.report(progress=0, total=100, message="Starting post generation")

        if data.skipAi:
            if not title:
                return GenerationResult(success=False, error="Title is required when skipAi is true")
            content = content if content is not None else SKELETON_CONTENT
            excerpt = excerpt if excerpt is not None else f"Blog post about {title}"
            await progress.report(progress=50, total=100, message="Creating skeleton post")
        elif not title or not content:
            await progress.report(progress=10, total=100, message="Generating post content with AI")
            prompt = data.prompt or DEFAULT_PROMPT
            if data.seriesName:
                prompt += f'\n\nNote: This is part of a series called "{data.seriesName}".'
            generated = await self.generator.generate("post:generation", {"prompt": prompt})
            title = title or _text(generated.get("title"))
            content = content or _text(generated.get("content"))
            excerpt = excerpt or _text(generated.get("excerpt"))
            if not title:
                raise GenerationError("Generated post has no title")
            await progress.report(progress=50, total=100, message=f'Generated post: "{title}"')
        elif not excerpt:
            await progress.report(progress=30, total=100, message="Generating excerpt with AI")
            generated = await self.generator.generate(
                "post:excerpt",
                {"prompt": f"Title: {title}\n\nContent:\n{content}"},
            )
            excerpt = _text(generated.get("excerpt"))
            await progress.report(progress=50, total=100, message="Excerpt generated")
        else:
            await progress.report(progress=50, total=100, message="Using provided content")

        await progress.report(progress=60, total=100, message="Creating post entity")

        series_index = data.seriesIndex
        if data.seriesName and not series_index:
            series_index = await self._next_series_index(data.seriesName)

        existing_ids = [entity.id for entity in await self.entity_service.list_entities(POST_ENTITY_TYPE)]
        slug = slugify(title) or "untitled"
        entity_id = dedupe_id(slug, existing_ids)

        frontmatter: dict[str, Any] = {
            "title": title,
            "slug": entity_id,
            "status": "draft",
            "excerpt": excerpt,
            "author": self.author or None,
            "coverImageId": data.coverImageId,
            "seriesName": data.seriesName,
            "seriesIndex": series_index,
        }
        metadata = {
            key: value
            for key, value in {
                "title": title,
                "slug": entity_id,
                "status": "draft",
                "seriesName": data.seriesName,
                "seriesIndex": series_index,
            }.items()
            if value is not None
        }

        await progress.report(progress=80, total=100, message="Saving post")
        result = await self.entity_service.create_entity(
            Entity(
                id=entity_id,
                entityType=POST_ENTITY_TYPE,
                content=render_markdown(frontmatter, content or ""),
                metadata=metadata,
            )
        )

        await progress.report(progress=100, total=100, message=f'Post "{title}" created')
        self.logger.info("Generated post %s (job=%s skipAi=%s)", result.entityId, job_id, data.skipAi)
        return GenerationResult(success=True, entityId=result.entityId, title=title, slug=entity_id)

    async def _next_series_index(self, series_name: str) -> int:
        posts = await self.entity_service.list_entities(
            POST_ENTITY_TYPE,
            filters={"seriesName": series_name},
        )
        published = [post for post in posts if post.metadata.get("publishedAt")]
        return len(published) + 1

    def summarize_data_for_log(self, data: GenerationJobData) -> dict[str, Any]:
        return {"prompt": data.prompt, "title": data.title}


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
