"""FlowDeck editor session and notices."""

from flow_editor.editor.notices import Notice, NoticeBoard
from flow_editor.editor.session import EditorSession

__all__ = [
    'EditorSession',
    'Notice',
    'NoticeBoard',
]
