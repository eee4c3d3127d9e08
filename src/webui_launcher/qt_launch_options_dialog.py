from collections.abc import Sequence

from qtpy.QtWidgets import (
    QCheckBox,
    QDialog,
    QDialogButtonBox,
    QFormLayout,
    QGroupBox,
    QLineEdit,
    QScrollArea,
    QSpinBox,
    QVBoxLayout,
    QWidget,
)

from webui_launcher.launch_options import (
    LaunchOption,
    LaunchOptionCard,
    LaunchOptionType,
)


class LaunchOptionCardWidget(QGroupBox):
    """Editors for the options of one card."""

    def __init__(
        self, card: LaunchOptionCard, parent: QWidget | None = None
    ) -> None:
        super().__init__(card.title, parent)
        self.card = card
        self.setToolTip(card.description)
        self._editors: list[QWidget] = []
        layout = QFormLayout(self)
        for option in card.options:
            editor = self._create_editor(option)
            self._editors.append(editor)
            if option.type == LaunchOptionType.BOOL:
                layout.addRow(editor)
            else:
                layout.addRow(option.name or card.title, editor)

    def _create_editor(self, option: LaunchOption) -> QWidget:
        if option.type == LaunchOptionType.BOOL:
            editor = QCheckBox(option.name, self)
            editor.setChecked(bool(option.option_value))
        elif option.type == LaunchOptionType.INT:
            editor = QSpinBox(self)
            editor.setRange(0, 2**31 - 1)
            # 0 shows the special text and means unset
            editor.setSpecialValueText(str(option.default_value or ''))
            editor.setValue(option.option_value or 0)
        else:
            editor = QLineEdit(self)
            editor.setPlaceholderText(str(option.default_value or ''))
            editor.setText(str(option.option_value or ''))
        return editor

    def matches(self, text: str) -> bool:
        text = text.strip().lower()
        if not text:
            return True
        return text in self.card.title.lower() or any(
            text in option.name.lower() for option in self.card.options
        )

    def value(self) -> LaunchOptionCard:
        options = []
        for option, editor in zip(self.card.options, self._editors):
            if option.type == LaunchOptionType.BOOL:
                value = editor.isChecked()
            elif option.type == LaunchOptionType.INT:
                value = editor.value() or None
            else:
                value = editor.text().strip()
            options.append(
                LaunchOption(
                    name=option.name,
                    type=option.type,
                    option_value=value,
                    default_value=option.default_value,
                )
            )
        return LaunchOptionCard(
            self.card.title, self.card.description, options
        )


class LaunchOptionsDialog(QDialog):
    """Edit the launch options of an installed package."""

    def __init__(
        self,
        cards: Sequence[LaunchOptionCard],
        parent: QWidget | None = None,
        title: str = 'Launch Options',
    ) -> None:
        super().__init__(parent)
        self.setWindowTitle(title)
        self.resize(500, 600)

        self.search = QLineEdit(self)
        self.search.setPlaceholderText('Search launch options...')
        self.search.setClearButtonEnabled(True)
        self.search.textChanged.connect(self.filter)

        container = QWidget(self)
        container_layout = QVBoxLayout(container)
        self.card_widgets = [
            LaunchOptionCardWidget(card, container) for card in cards
        ]
        for widget in self.card_widgets:
            container_layout.addWidget(widget)
        container_layout.addStretch()

        scroll = QScrollArea(self)
        scroll.setWidgetResizable(True)
        scroll.setWidget(container)

        buttons = QDialogButtonBox(
            QDialogButtonBox.StandardButton.Ok
            | QDialogButtonBox.StandardButton.Cancel,
            parent=self,
        )
        buttons.accepted.connect(self.accept)
        buttons.rejected.connect(self.reject)

        layout = QVBoxLayout(self)
        layout.addWidget(self.search)
        layout.addWidget(scroll)
        layout.addWidget(buttons)

    def filter(self, text: str) -> None:
        for widget in self.card_widgets:
            widget.setVisible(widget.matches(text))

    def cards(self) -> list[LaunchOptionCard]:
        """The cards with the values currently entered."""
        return [widget.value() for widget in self.card_widgets]
