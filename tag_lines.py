"""
Branching Script Line Tagger (command line)

Gives every narrative and choice line of a script project a stable
``#id:`` tag, without touching lines that already have one.

Usage
-----
  python tag_lines.py path/to/main.ink
  python tag_lines.py path/to/main.ink --dry-run

The root script and every file it ``INCLUDE``s are tagged. Ids look like
``Knot_Stitch_7K2Q`` and are unique across the whole project.

Exit status is 1 when the root script cannot be read or parsed, 0 otherwise.
Lines for which no unique id could be drawn are reported and left untagged;
running the tool again retries them.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Dict, List, Tuple

from errors import GenerationExhausted, MultipleTagsError
from i18n import get_user_lang_file, set_language, set_language_from_file, tr
from id_generator import IdGenerator
from project import Project, load_project
from session import TaggingSession
from settings import load_settings
from story_parser import ParseError, parse
from sync_driver import SyncDriver, compile_in_executor


async def tag_project(
    session: TaggingSession, driver: SyncDriver, order: List[str]
) -> Tuple[Dict[str, int], List[GenerationExhausted]]:
    before = {name: len(session.documents[name].tracker) for name in order}
    failures: List[GenerationExhausted] = []
    for name in order:
        session.set_active(name)
        await driver.run_now()
        if driver.last_result is not None:
            failures.extend(f for f in driver.last_result.failures if f.file_name == name)
    counts = {name: len(session.documents[name].tracker) - before[name] for name in order}
    return counts, failures


def run(project: Project, dry_run: bool, repair: bool, strict: bool, max_attempts: int) -> int:
    root = project.root_name
    try:
        parse(project.files[root], root, project.files, project.root_dir)
    except ParseError as e:
        print(f"{tr('parse_error')}: {e}")
        return 1

    original = dict(project.files)
    session = TaggingSession(project.files, repair=repair, strict=strict)
    order = list(project.files)
    try:
        for name in order:
            session.open_document(name)
    except MultipleTagsError as e:
        print(f"{tr('error')}: {e}")
        return 1

    async def compile_fn(content, file_name, files):
        return await compile_in_executor(content, file_name, files, project.root_dir)

    driver = SyncDriver(session, compile_fn=compile_fn, generator=IdGenerator(max_attempts=max_attempts))
    counts, failures = asyncio.run(tag_project(session, driver, order))

    for name in order:
        if counts[name]:
            print(tr("tag_summary", file=name, count=counts[name]))
    for failure in failures:
        print(tr("untagged_failure", file=failure.file_name, line=failure.line, text=failure.text))
    for identifier, places in session.duplicate_ids().items():
        where = ", ".join(f"{f}:{ln}" for f, ln in places)
        print(tr("duplicate_id", id=identifier, places=where))
    print(tr("tag_total", count=sum(counts.values()), files=len(order)))

    if dry_run:
        print(tr("dry_run"))
        return 0
    changed = [(name, content) for name, content in session.save_pairs() if content != original.get(name)]
    try:
        project.save(changed)
    except OSError as e:
        print(tr("save_error", err=e))
        return 1
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Branching Script Line Tagger")
    parser.add_argument("file", help="Root script path (.ink)")
    parser.add_argument("--dry-run", action="store_true", help="report without writing files")
    parser.add_argument("--repair", action="store_true", help="fix spacing around #id: tags")
    parser.add_argument("--strict", action="store_true", help="reject lines with more than one id tag")
    parser.add_argument("--lang", help="language code (e.g., en, ko)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if args.lang:
        set_language(args.lang)
    else:
        set_language_from_file(get_user_lang_file("tagger_language.txt"))

    if not os.path.isfile(args.file):
        print(tr("file_not_found", path=args.file))
        return 1

    settings = load_settings().for_project(os.path.abspath(args.file))
    try:
        project = load_project(args.file)
    except OSError as e:
        print(tr("read_error", err=e))
        return 1
    return run(
        project,
        dry_run=args.dry_run,
        repair=args.repair or settings.repair_tag_spacing,
        strict=args.strict or settings.strict_tags,
        max_attempts=settings.max_attempts,
    )


if __name__ == "__main__":
    sys.exit(main())
