import webbrowser

from qtpy.QtCore import Qt, Signal
from qtpy.QtGui import QMouseEvent
from qtpy.QtWidgets import QLabel, QWidget


class ClickableLabel(QLabel):
    clicked = Signal()

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent=parent)

    def mouseReleaseEvent(self, event: QMouseEvent) -> None:
        super().mouseReleaseEvent(event)
        self.clicked.emit()


class WebUrlLabel(ClickableLabel):
    """Address of a running web UI, opened in the browser when clicked."""

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent=parent)
        self._url = ''
        self.setCursor(Qt.CursorShape.PointingHandCursor)
        self.clicked.connect(self.open_url)
        self.set_url('')

    @property
    def url(self) -> str:
        return self._url

    def set_url(self, url: str) -> None:
        self._url = url
        self.setText(f'<a href="{url}">{url}</a>' if url else '')
        self.setVisible(bool(url))

    def open_url(self) -> None:
        if self._url:
            webbrowser.open(self._url)
