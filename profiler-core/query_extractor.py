#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Query Extractor - Finds MongoDB query call-sites in JavaScript/TypeScript
source text and turns them into QueryDescriptor records.

Matching is regex based and best-effort: it is not a parser,
and both false positives and false negatives are accepted. Three rules run
over every file, in this order:

  direct   handle.collection('name')[.call(...)...].method(args)
  chained  handle.collection('name').method(args).modifier(args)...
  entity   Name.method(args), scanned line by line
"""

import json
import logging
import os
import re
from typing import Dict, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from query_models import QueryDescriptor, RECOGNIZED_METHODS

logger = logging.getLogger(__name__)


SOURCE_EXTENSIONS = ('.js', '.jsx', '.ts', '.tsx', '.mjs', '.cjs')

EXCLUDED_DIRS = {
    'node_modules', 'bower_components', 'vendor', 'dist', 'build', 'coverage',
    '.git', '.hg', '.svn', '.next', '.nuxt', '.cache', '.venv', 'venv', '__pycache__',
}

# Cursor modifiers that make a call chain worth keeping as a whole.
CHAIN_MODIFIERS = ('project', 'projection', 'sort', 'skip', 'limit', 'hint', 'collation')

PATTERN_DIRECT = 'direct'
PATTERN_CHAINED = 'chained'
PATTERN_ENTITY = 'entity'

# Identifiers that are never collection models.
_IGNORED_ENTITIES = {'this', 'self', 'super', 'Array', 'Object', 'Promise', 'Math', 'JSON', 'console', 'Reflect', '_'}

_METHOD_ALTERNATION = '|'.join(sorted(RECOGNIZED_METHODS, key=len, reverse=True))

_COLLECTION_ACCESS = re.compile(
    r'\b[A-Za-z_$][\w$]*\s*\.\s*collection\s*\(\s*([\'"`])([^\'"`]+)\1\s*\)'
)
_CALL_NAME = re.compile(r'\s*\.\s*([A-Za-z_$][\w$]*)\s*\(')
_ENTITY_CALL = re.compile(
    r'(?<![\w$.)\]])([A-Za-z_$][\w$]*)\s*\.\s*(' + _METHOD_ALTERNATION + r')\s*\('
)
_DOTTED_ENTITY_CALL = re.compile(
    r'(?<=\.)([A-Za-z_$][\w$]*)\s*\.\s*(' + _METHOD_ALTERNATION + r')\s*\('
)

_descriptor_list = TypeAdapter(List[QueryDescriptor])


class QueryFileError(Exception):
    """The persisted descriptor list is missing or malformed."""


def is_placeholder(argument: str) -> bool:
    """True for argument text that is only a template or an unbounded scan."""
    stripped = argument.strip()
    return stripped in ('', '{}', '[]') or '...' in stripped


def capture_arguments(text: str, open_index: int) -> Optional[Tuple[str, int]]:
    """
    Given the index of an opening parenthesis, returns the raw text between
    it and its matching closing parenthesis, plus the index just past it.
    Strings, template literals and comments are skipped while balancing.
    Returns None when the call is never closed.
    """
    depth = 0
    index = open_index
    length = len(text)
    while index < length:
        char = text[index]
        if char in '"\'`':
            index = _skip_string(text, index)
            continue
        if text.startswith('//', index):
            newline = text.find('\n', index)
            index = length if newline == -1 else newline + 1
            continue
        if text.startswith('/*', index):
            end = text.find('*/', index + 2)
            index = length if end == -1 else end + 2
            continue
        if char in '([{':
            depth += 1
        elif char in ')]}':
            depth -= 1
            if depth == 0:
                return text[open_index + 1:index], index + 1
        index += 1
    return None


def _skip_string(text, index):
    quote = text[index]
    index += 1
    while index < len(text):
        char = text[index]
        if char == '\\':
            index += 2
            continue
        if char == quote:
            return index + 1
        if char == '\n' and quote != '`':
            return index + 1
        index += 1
    return index


def parse_call_chain(text: str, start: int) -> List[Tuple[str, str]]:
    """Reads consecutive `.name(args)` calls starting at `start`."""
    chain = []
    position = start
    while True:
        match = _CALL_NAME.match(text, position)
        if not match:
            return chain
        captured = capture_arguments(text, match.end() - 1)
        if captured is None:
            return chain
        arguments, position = captured
        chain.append((match.group(1), arguments.strip()))


class QueryExtractor:
    """Walks a source tree and collects query descriptors."""

    def __init__(self, extensions=SOURCE_EXTENSIONS, excluded_dirs=None):
        self.extensions = tuple(extensions)
        self.excluded_dirs = set(EXCLUDED_DIRS if excluded_dirs is None else excluded_dirs)

    def find_source_files(self, root: str) -> List[str]:
        """Source files below root, in a stable depth-first order."""
        files = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in self.excluded_dirs)
            for filename in sorted(filenames):
                if filename.endswith(self.extensions):
                    files.append(os.path.join(dirpath, filename))
        return files

    def extract(self, root: str) -> List[QueryDescriptor]:
        """Scans every source file under root and returns descriptors in discovery order."""
        files = self.find_source_files(root)
        logger.info("extract_start root=%s files=%s", root, len(files))

        descriptors = []
        for path in files:
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    content = f.read()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("extract_skip_file path=%s error=%s", path, str(e))
                continue

            location = os.path.relpath(path, root).replace(os.sep, '/')
            found = self.extract_from_content(content, location)
            if found:
                logger.debug("extract_file path=%s queries=%s", location, len(found))
            descriptors.extend(found)

        logger.info("extract_done root=%s queries=%s", root, len(descriptors))
        return descriptors

    def extract_from_content(self, content: str, location: str) -> List[QueryDescriptor]:
        """Applies the three rules to one file's text, in fixed order."""
        return (
            self._extract_direct_calls(content, location)
            + self._extract_chained_calls(content, location)
            + self._extract_entity_calls(content, location)
        )

    def _extract_direct_calls(self, content, location):
        descriptors = []
        for match in _COLLECTION_ACCESS.finditer(content):
            collection = match.group(2).strip()
            chain = parse_call_chain(content, match.end())

            # The last recognized method in the chain is the query operation.
            operation = None
            for name, arguments in chain:
                if name in RECOGNIZED_METHODS:
                    operation = (name, arguments)
            if operation is None:
                continue

            method, arguments = operation
            if is_placeholder(arguments):
                logger.debug("extract_placeholder rule=direct collection=%s method=%s", collection, method)
                continue
            descriptors.append(QueryDescriptor(
                collection=collection,
                method=method,
                raw_argument=arguments,
                pattern=PATTERN_DIRECT,
                source_location=location,
            ))
        return descriptors

    def _extract_chained_calls(self, content, location):
        descriptors = []
        for match in _COLLECTION_ACCESS.finditer(content):
            collection = match.group(2).strip()
            chain = parse_call_chain(content, match.end())
            if not chain or chain[0][0] not in RECOGNIZED_METHODS:
                continue

            operations: Dict[str, str] = {}
            for name, arguments in chain:
                if name == chain[0][0] or name in CHAIN_MODIFIERS:
                    operations.setdefault(name, arguments)

            method, primary_arguments = chain[0]
            if not any(name in CHAIN_MODIFIERS for name in operations):
                continue
            if is_placeholder(primary_arguments) or any('...' in a for a in operations.values()):
                logger.debug("extract_placeholder rule=chained collection=%s method=%s", collection, method)
                continue

            descriptors.append(QueryDescriptor(
                collection=collection,
                method=method,
                raw_argument=json.dumps(operations),
                pattern=PATTERN_CHAINED,
                source_location=location,
            ))
        return descriptors

    def _extract_entity_calls(self, content, location):
        descriptors = []
        offset = 0
        for line in content.splitlines(keepends=True):
            matches = list(_ENTITY_CALL.finditer(line)) + list(_DOTTED_ENTITY_CALL.finditer(line))
            matches.sort(key=lambda m: m.start())
            for match in matches:
                entity, method = match.group(1), match.group(2)
                if entity in _IGNORED_ENTITIES:
                    continue
                captured = capture_arguments(content, offset + match.end() - 1)
                if captured is None:
                    continue
                arguments = captured[0].strip()
                if is_placeholder(arguments):
                    continue
                descriptors.append(QueryDescriptor(
                    collection=entity.lower(),
                    method=method,
                    raw_argument=arguments,
                    pattern=PATTERN_ENTITY,
                    source_location=location,
                ))
            offset += len(line)
        return descriptors


def save_queries(descriptors: List[QueryDescriptor], path: str) -> None:
    """Writes descriptors as a JSON array for inspection and later stages."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(_descriptor_list.dump_json(descriptors, indent=2).decode('utf-8'))
    logger.info("queries_saved path=%s count=%s", path, len(descriptors))


def load_queries(path: str) -> List[QueryDescriptor]:
    """Reads a descriptor file written by save_queries. Any defect is fatal."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return _descriptor_list.validate_json(f.read())
    except OSError as e:
        raise QueryFileError(f"cannot read query file {path}: {e}") from e
    except ValidationError as e:
        raise QueryFileError(f"invalid query file {path}: {e}") from e
