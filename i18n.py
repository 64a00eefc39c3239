import os
import sys
from pathlib import Path

APP_DIR_NAME = "BranchingLineIds"


def get_app_data_dir() -> Path:
    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return base / APP_DIR_NAME


def get_user_lang_file(name: str = "language.txt") -> Path:
    return get_app_data_dir() / name


def _load_language(path) -> str:
    try:
        with open(path, encoding='utf-8') as f:
            return f.read().strip() or 'en'
    except OSError:
        return 'en'


LANG = 'en'


def set_language(lang: str) -> None:
    global LANG
    LANG = 'korean' if lang in ('ko', 'kr', 'korean') else lang


def set_language_from_file(path) -> None:
    set_language(_load_language(path))


_STRINGS = {
    'en': {
        'warning': 'Warning',
        'error': 'Error',
        'parse_error': 'Parse Error',
        'read_error': 'An error occurred while reading the file:\n{err}',
        'save_error': 'An error occurred while saving the file:\n{err}',
        'file_not_found': 'File not found: {path}',
        'open_title': 'Open Script',
        'save_title': 'Save',
        'save_done': 'Saved.',
        'menu_file': 'File',
        'menu_open': 'Open Project...',
        'menu_save': 'Save',
        'menu_exit': 'Exit',
        'menu_tools': 'Tools',
        'menu_tag_now': 'Tag Lines Now',
        'menu_validate': 'Validate IDs',
        'menu_goto_id': 'Go to ID...',
        'goto_id_prompt': 'Line ID:',
        'id_not_found': 'No line carries the ID {id}.',
        'invalid_id': 'Not a valid line ID: {id}',
        'no_id': '(no id)',
        'line_id': 'Line {line}: {id}',
        'unsaved_changes_title': 'Unsaved Changes',
        'unsaved_changes_prompt': 'Save changes before closing?',
        'validation_title': 'ID Validation',
        'validation_ok': 'No problems found.',
        'duplicate_id': 'Duplicate ID {id}: {places}',
        'untagged_failure': 'Could not generate an ID for {file} line {line}: {text}',
        'tag_summary': '{file}: {count} new IDs',
        'tag_total': 'Tagged {count} lines in {files} files.',
        'dry_run': 'Dry run: nothing was written.',
        'language_change_restart': 'Please restart the program to apply the language.',
        'close': 'Close',
        'files_label': 'Files',
    },
    'korean': {
        'warning': '경고',
        'error': '오류',
        'parse_error': '파싱 오류',
        'read_error': '파일을 읽는 중 오류가 발생했습니다:\n{err}',
        'save_error': '파일을 저장하는 중 오류가 발생했습니다:\n{err}',
        'file_not_found': '파일을 찾을 수 없습니다: {path}',
        'open_title': '스크립트 열기',
        'save_title': '저장',
        'save_done': '저장했습니다.',
        'menu_file': '파일',
        'menu_open': '프로젝트 열기...',
        'menu_save': '저장',
        'menu_exit': '나가기',
        'menu_tools': '도구',
        'menu_tag_now': '지금 ID 붙이기',
        'menu_validate': 'ID 검사',
        'menu_goto_id': 'ID로 이동...',
        'goto_id_prompt': '줄 ID:',
        'id_not_found': 'ID {id}를 가진 줄이 없습니다.',
        'invalid_id': '올바른 줄 ID가 아닙니다: {id}',
        'no_id': '(ID 없음)',
        'line_id': '{line}번 줄: {id}',
        'unsaved_changes_title': '저장되지 않은 변경',
        'unsaved_changes_prompt': '닫기 전에 변경 내용을 저장하시겠습니까?',
        'validation_title': 'ID 검사',
        'validation_ok': '문제가 없습니다.',
        'duplicate_id': '중복된 ID {id}: {places}',
        'untagged_failure': '{file} {line}번 줄에 ID를 만들지 못했습니다: {text}',
        'tag_summary': '{file}: 새 ID {count}개',
        'tag_total': '{files}개 파일에서 {count}줄에 ID를 붙였습니다.',
        'dry_run': '시험 실행: 아무것도 저장하지 않았습니다.',
        'language_change_restart': '언어를 적용하려면 프로그램을 다시 시작하세요.',
        'close': '닫기',
        'files_label': '파일',
    },
}


def tr(key: str, **kwargs) -> str:
    table = _STRINGS.get(LANG, _STRINGS['en'])
    text = table.get(key, _STRINGS['en'].get(key, key))
    return text.format(**kwargs)
