"""
Parsing of MDX article files.

An article is a YAML front-matter block fenced by ``---`` lines at the top of
the file, followed by the body. The parser splits the two with
python-frontmatter, normalizes the recognized metadata fields and computes
derived metrics on the body: word count, reading time and heading outline.

Metadata is open: unrecognized fields pass through unchanged. Recognized
fields with a wrong type or an invalid enum value are dropped, never fatal.
Only a block that cannot be split at all raises ParseError.
"""

import datetime
import math
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Sequence

import frontmatter
import yaml

from .config import AccessLevel, ArticleStatus
from .error_tracker import ParseError

WORDS_PER_MINUTE = 200

STRING_FIELDS = ('title', 'description', 'author', 'category', 'image', 'slug')
STATUS_VALUES = {s.value for s in ArticleStatus}
ACCESS_LEVEL_VALUES = {a.value for a in AccessLevel}

_HEADING_RE = re.compile(r'^(#{1,6})\s+(.+)$', re.MULTILINE)
_CODE_FENCE_RE = re.compile(r'```[\s\S]*?```')
_INLINE_CODE_RE = re.compile(r'`[^`]*`')
_HEADER_MARK_RE = re.compile(r'^\s*#{1,6}\s+', re.MULTILINE)
_LINK_RE = re.compile(r'\[([^\]]+)\]\([^)]+\)')
_FORMATTING_RE = re.compile(r'[*_~`]')
_CJK_RE = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF]")
_WORD_RE = re.compile(r'\b\w+\b', re.ASCII)

_handler = frontmatter.YAMLHandler()


@dataclass
class Heading:
    level: int
    text: str
    slug: str

    def to_dict(self) -> Dict[str, Any]:
        return {'level': self.level, 'text': self.text, 'slug': self.slug}


@dataclass
class ParsedArticle:
    """An article split into validated metadata and body, with derived metrics."""
    metadata: Dict[str, Any]
    body: str
    word_count: int
    reading_time: int
    headings: List[Heading] = field(default_factory=list)
    has_front_matter: bool = True


@dataclass
class ContentValidation:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def slugify(text: str) -> str:
    """
    Lowercase, drop everything but ASCII letters, digits and whitespace,
    turn whitespace runs into single hyphens and trim edge hyphens.
    """
    text = re.sub(r'[^a-z0-9\s]', '', text.lower())
    text = re.sub(r'\s+', '-', text.strip())
    return text.strip('-')


def derive_slug(path: str, contents_dir: str = 'contents',
                extensions: Sequence[str] = ('.mdx',)) -> str:
    """
    Derive an article slug from its repository path.

    >>> derive_slug('contents/blog/index.mdx')
    'blog'
    >>> derive_slug('contents/index.mdx')
    'index'
    """
    slug = path.strip('/')
    prefix = contents_dir.strip('/') + '/'
    if slug.startswith(prefix):
        slug = slug[len(prefix):]
    for ext in extensions:
        if slug.endswith(ext):
            slug = slug[:-len(ext)]
            break
    if slug == 'index':
        return 'index'
    if slug.endswith('/index'):
        slug = slug[:-len('/index')]
    return slug or 'index'


def default_title(path: str) -> str:
    """File name without extension."""
    return PurePosixPath(path).stem


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def validate_front_matter(data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize recognized front-matter fields and pass the rest through."""
    validated: Dict[str, Any] = {}

    for name in STRING_FIELDS:
        value = data.get(name)
        if isinstance(value, str) and value:
            validated[name] = value

    date = data.get('date')
    if isinstance(date, (datetime.date, datetime.datetime)):
        validated['date'] = date.isoformat()
    elif date not in (None, ''):
        validated['date'] = str(date)

    tags = data.get('tags')
    if isinstance(tags, list):
        validated['tags'] = [t for t in tags if isinstance(t, str)]

    if data.get('status') in STATUS_VALUES:
        validated['status'] = data['status']
    if data.get('accessLevel') in ACCESS_LEVEL_VALUES:
        validated['accessLevel'] = data['accessLevel']

    if isinstance(data.get('featured'), bool):
        validated['featured'] = data['featured']

    recognized = set(STRING_FIELDS) | {'date', 'tags', 'status', 'accessLevel', 'featured'}
    for key, value in data.items():
        if key not in recognized and value is not None:
            validated[key] = _json_safe(value)

    return validated


def split_front_matter(raw: str, source_id: Optional[str] = None):
    """
    Split raw text into (metadata dict, body, has_front_matter).

    Raises ParseError for an unterminated block, invalid YAML or a block
    that is not a mapping.
    """
    text = raw.lstrip("\ufeff")
    if not _handler.detect(text):
        return {}, text, False

    try:
        fm, body = _handler.split(text)
    except ValueError:
        raise ParseError("Front-matter block is not closed", source_id=source_id,
                         recovery_suggestion="Add a closing '---' line after the metadata")
    try:
        metadata = _handler.load(fm)
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid YAML in front-matter: {e}", source_id=source_id)

    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict):
        raise ParseError(f"Front-matter must be a mapping, got {type(metadata).__name__}", source_id=source_id)
    return metadata, body.strip('\r\n'), True


def count_words(text: str) -> int:
    """Latin word count plus half the CJK character count, rounded half up."""
    clean = _CODE_FENCE_RE.sub('', text)
    clean = _INLINE_CODE_RE.sub('', clean)
    clean = _HEADER_MARK_RE.sub('', clean)
    clean = _LINK_RE.sub(r'\1', clean)
    clean = _FORMATTING_RE.sub('', clean)

    cjk_words = len(_CJK_RE.findall(clean)) / 2
    latin_words = len(_WORD_RE.findall(clean))
    return int(math.floor(cjk_words + latin_words + 0.5))


def reading_time(word_count: int) -> int:
    return max(1, math.ceil(word_count / WORDS_PER_MINUTE))


def extract_headings(text: str) -> List[Heading]:
    headings = []
    for match in _HEADING_RE.finditer(text):
        heading_text = match.group(2).strip()
        headings.append(Heading(level=len(match.group(1)), text=heading_text, slug=slugify(heading_text)))
    return headings


def parse_article(raw: str, source_id: Optional[str] = None) -> ParsedArticle:
    metadata, body, has_front_matter = split_front_matter(raw, source_id)
    words = count_words(body)
    return ParsedArticle(
        metadata=validate_front_matter(metadata),
        body=body,
        word_count=words,
        reading_time=reading_time(words),
        headings=extract_headings(body),
        has_front_matter=has_front_matter,
    )


def render_article(metadata: Dict[str, Any], body: str) -> str:
    """Serialize metadata and body back into an article file."""
    if not metadata:
        return body
    post = frontmatter.Post(body)
    post.metadata.update(metadata)
    return frontmatter.dumps(post) + '\n'


def validate_article_content(raw: str) -> ContentValidation:
    """
    Pre-publish checks for an article file: parseable front-matter, a
    title, a non-empty body and balanced code fences.
    """
    errors: List[str] = []
    warnings: List[str] = []
    try:
        metadata, body, has_front_matter = split_front_matter(raw)
    except ParseError as e:
        return ContentValidation(is_valid=False, errors=[f"Failed to parse front-matter: {e.message}"])

    if not has_front_matter:
        warnings.append("No front-matter found")
    if not isinstance(metadata.get('title'), str) or not metadata.get('title'):
        errors.append("Title is required in front-matter")
    if not body.strip():
        errors.append("Content cannot be empty")
    if body.count('```') % 2 != 0:
        errors.append("Unclosed code block detected")

    return ContentValidation(is_valid=not errors, errors=errors, warnings=warnings)
