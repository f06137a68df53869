import asyncio
import os
import sys
from functools import partial

from PyQt6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QGridLayout,
    QLabel, QSpinBox, QComboBox, QPushButton, QToolButton, QCheckBox, QFrame,
    QMessageBox, QInputDialog, QFileDialog, QStatusBar
)
from PyQt6.QtCore import Qt, QThread, QObject, QTimer, pyqtSignal, QStandardPaths
from PyQt6.QtGui import QPixmap, QAction, QIcon

# Project Modules
from app_controller import GENERIC_DOWNLOAD_ERROR, PlaceholderController
from config_manager import ConfigManager
from errors import FetchFailed
from image_utils import TargetFormat
from logger import get_logger, setup_logger
from placeholder_services import build_filename

_logger = get_logger("main")

# Application specific path
APP_DIR = os.path.dirname(os.path.abspath(__file__))

PRESET_COLUMNS = 4
PREVIEW_DEBOUNCE_MS = 300
MAX_DIMENSION = 10000


class AppSignals(QObject):
    presets_changed = pyqtSignal(list)
    notice = pyqtSignal(str)
    preview_loaded = pyqtSignal(str, bytes)  # url, image bytes
    preset_applied = pyqtSignal(int, int)
    download_finished = pyqtSignal(dict)
    presets_ready = pyqtSignal()


class AsyncLoopThread(QThread):
    """Runs the asyncio loop that owns the controller and the preset store.

    Everything touching the store is scheduled onto this loop, so the store
    only ever sees one thread.
    """

    def __init__(self, parent=None):
        super().__init__(parent)
        self.loop = asyncio.new_event_loop()

    def run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()
        self.loop.close()

    def submit(self, coro):
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def stop(self):
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.wait()


class PlaceholderDownloaderApp(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("Placeholder Image Downloader")
        self.setGeometry(100, 100, 560, 640)

        self.config_manager = ConfigManager(APP_DIR)
        if not self.config_manager.get("download_dir"):
            downloads = QStandardPaths.writableLocation(QStandardPaths.StandardLocation.DownloadLocation)
            if downloads:
                self.config_manager.set("download_dir", downloads)

        self.signals = AppSignals()
        self.loop_thread = AsyncLoopThread(self)
        self.controller = PlaceholderController(
            self.config_manager,
            # Called on the loop thread; signals queue the work onto the GUI thread
            render=lambda presets: self.signals.presets_changed.emit(list(presets)),
            notify=self.signals.notice.emit,
        )

        self.presets = []
        self.manage_mode = False
        self.last_save_dir = ""

        self.preview_timer = QTimer(self)
        self.preview_timer.setSingleShot(True)
        self.preview_timer.setInterval(PREVIEW_DEBOUNCE_MS)
        self.preview_timer.timeout.connect(self.update_preview)

        self.init_ui()

        self.signals.presets_changed.connect(self.render_presets)
        self.signals.notice.connect(self.show_notice)
        self.signals.preview_loaded.connect(self.on_preview_loaded)
        self.signals.preset_applied.connect(self.set_values)
        self.signals.download_finished.connect(self.on_download_finished)
        self.signals.presets_ready.connect(self.on_presets_ready)

        self.loop_thread.start()
        self._run(self.controller.start(), on_result=lambda _presets: self.signals.presets_ready.emit())

    def init_ui(self):
        menubar = self.menuBar()
        file_menu = menubar.addMenu('&File')
        exit_action = QAction(QIcon.fromTheme("application-exit"), '&Exit', self)
        exit_action.setShortcut('Ctrl+Q')
        exit_action.setStatusTip('Exit application')
        exit_action.triggered.connect(self.close)
        file_menu.addAction(exit_action)

        main_widget = QWidget()
        self.setCentralWidget(main_widget)
        main_layout = QVBoxLayout(main_widget)

        size_group = QFrame()
        size_group.setFrameShape(QFrame.Shape.StyledPanel)
        size_layout = QHBoxLayout(size_group)
        self.width_spin = self._make_dimension_spin()
        self.height_spin = self._make_dimension_spin()
        size_layout.addWidget(QLabel("Width:"))
        size_layout.addWidget(self.width_spin)
        size_layout.addWidget(QLabel("Height:"))
        size_layout.addWidget(self.height_spin)
        main_layout.addWidget(size_group)

        presets_group = QFrame()
        presets_group.setFrameShape(QFrame.Shape.StyledPanel)
        presets_group_layout = QVBoxLayout(presets_group)
        presets_header = QHBoxLayout()
        presets_header.addWidget(QLabel("Presets:"))
        presets_header.addStretch()
        self.add_preset_button = QPushButton("Add")
        self.add_preset_button.clicked.connect(self.add_preset)
        presets_header.addWidget(self.add_preset_button)
        self.manage_preset_button = QPushButton("Manage")
        self.manage_preset_button.clicked.connect(self.toggle_manage_mode)
        self.manage_preset_button.setEnabled(False)  # until the stored presets are loaded
        presets_header.addWidget(self.manage_preset_button)
        presets_group_layout.addLayout(presets_header)
        self.presets_container = QWidget()
        self.presets_layout = QGridLayout(self.presets_container)
        self.presets_layout.setContentsMargins(0, 0, 0, 0)
        presets_group_layout.addWidget(self.presets_container)
        main_layout.addWidget(presets_group)

        self.preview_label = QLabel()
        self.preview_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.preview_label.setMinimumHeight(260)
        self.preview_label.setFrameShape(QFrame.Shape.StyledPanel)
        main_layout.addWidget(self.preview_label, 1)

        download_layout = QHBoxLayout()
        download_layout.addWidget(QLabel("Format:"))
        self.format_combo = QComboBox()
        for target_format in TargetFormat:
            self.format_combo.addItem(target_format.name, target_format.extension)
        default_format = TargetFormat.resolve(self.config_manager.default_format)
        self.format_combo.setCurrentIndex(self.format_combo.findData(default_format.extension))
        download_layout.addWidget(self.format_combo)
        self.save_as_checkbox = QCheckBox("Ask where to save")
        download_layout.addWidget(self.save_as_checkbox)
        download_layout.addStretch()
        self.download_button = QPushButton("Download")
        self.download_button.clicked.connect(self.submit_download)
        download_layout.addWidget(self.download_button)
        main_layout.addLayout(download_layout)

        self.statusBar = QStatusBar()
        self.setStatusBar(self.statusBar)
        self.statusBar.showMessage("Loading presets...")

    def _make_dimension_spin(self):
        spin = QSpinBox()
        spin.setRange(0, MAX_DIMENSION)
        spin.setSpecialValueText(" ")  # 0 shows as empty, i.e. not entered yet
        spin.valueChanged.connect(lambda _value: self.preview_timer.start())
        return spin

    def get_values(self):
        return self.width_spin.value(), self.height_spin.value()

    def set_values(self, w, h):
        self.width_spin.setValue(w)
        self.height_spin.setValue(h)
        self.update_preview()

    # Loop bridging

    def _run(self, coro, on_result=None, on_error=None):
        future = self.loop_thread.submit(coro)

        def done(fut):
            if fut.cancelled():
                return
            error = fut.exception()
            if error is not None:
                _logger.error("Background task failed: %s", error)
                if on_error is not None:
                    on_error(error)
                else:
                    self.signals.notice.emit(f"Unexpected error: {error}")
            elif on_result is not None:
                on_result(fut.result())

        future.add_done_callback(done)
        return future

    # Presets

    def render_presets(self, presets):
        self.presets = presets
        while self.presets_layout.count():
            item = self.presets_layout.takeAt(0)
            if item.widget() is not None:
                item.widget().deleteLater()

        for index, preset in enumerate(presets):
            cell = QWidget()
            cell_layout = QHBoxLayout(cell)
            cell_layout.setContentsMargins(0, 0, 0, 0)
            button = QPushButton(preset.label)
            button.clicked.connect(partial(self.apply_preset, index))
            cell_layout.addWidget(button)

            if self.manage_mode:
                edit_button = QToolButton()
                edit_button.setText("✎")
                edit_button.setToolTip("Edit")
                edit_button.clicked.connect(partial(self.edit_preset, index))
                delete_button = QToolButton()
                delete_button.setText("🗑")
                delete_button.setToolTip("Delete")
                delete_button.clicked.connect(partial(self.delete_preset, index))
                cell_layout.addWidget(edit_button)
                cell_layout.addWidget(delete_button)

            self.presets_layout.addWidget(cell, index // PRESET_COLUMNS, index % PRESET_COLUMNS)

        if self.statusBar.currentMessage() == "Loading presets...":
            self.statusBar.clearMessage()

    def on_presets_ready(self):
        self.manage_preset_button.setEnabled(True)

    def toggle_manage_mode(self):
        self.manage_mode = not self.manage_mode
        self.manage_preset_button.setText("Done" if self.manage_mode else "Manage")
        self.render_presets(self.presets)

    def add_preset(self):
        w, h = self.get_values()
        if not w or not h:
            QMessageBox.warning(self, "Add Preset", "Enter a width and height first.")
            return
        self._run(self.controller.add_preset(w, h))

    def apply_preset(self, index):
        async def apply():
            return self.controller.apply_preset(index)

        self._run(apply(), on_result=lambda preset: self.signals.preset_applied.emit(preset.w, preset.h))

    def edit_preset(self, index):
        if not 0 <= index < len(self.presets):
            return
        item = self.presets[index]
        text, ok = QInputDialog.getText(self, "Edit Preset", "Preset (e.g. 300x200):", text=item.key)
        if not ok or not text:
            return
        self._run(self.controller.edit_preset(index, text))

    def delete_preset(self, index):
        if not 0 <= index < len(self.presets):
            return
        item = self.presets[index]
        reply = QMessageBox.question(self, "Delete Preset", f"Delete this preset? ({item.w}x{item.h})")
        if reply != QMessageBox.StandardButton.Yes:
            return
        self._run(self.controller.remove_preset(index))

    # Preview

    def update_preview(self):
        w, h = self.get_values()
        url = self.controller.preview_url(w, h)
        if url is None:
            self.preview_label.clear()
            return

        async def fetch_preview():
            try:
                image_bytes = await self.controller.service.fetch(url)
            except FetchFailed as e:
                _logger.warning("Preview fetch failed: %s", e)
                image_bytes = b""
            self.signals.preview_loaded.emit(url, image_bytes)

        self._run(fetch_preview())

    def on_preview_loaded(self, url, image_bytes):
        # Ignore answers for sizes the user has already moved away from
        if url != self.controller.preview_url(*self.get_values()):
            return
        pixmap = QPixmap()
        if not pixmap.loadFromData(image_bytes):
            self.preview_label.setText("Preview unavailable")
            return
        target = self.preview_label.size()
        if pixmap.width() > target.width() or pixmap.height() > target.height():
            pixmap = pixmap.scaled(target, Qt.AspectRatioMode.KeepAspectRatio,
                                   Qt.TransformationMode.SmoothTransformation)
        self.preview_label.setPixmap(pixmap)

    # Downloads

    def submit_download(self):
        w, h = self.get_values()
        if not w or not h:
            QMessageBox.warning(self, "Download", "Enter a valid width and height.")
            return
        format_selector = self.format_combo.currentData()

        target_path = None
        if self.save_as_checkbox.isChecked():
            # Dialogs must run on the GUI thread, so ask before handing off to the loop
            target_format = TargetFormat.resolve(format_selector)
            suggested = os.path.join(self.last_save_dir or self.controller.dispatcher.download_dir,
                                     build_filename(w, h, target_format))
            target_path, _ = QFileDialog.getSaveFileName(
                self, "Save Placeholder Image", suggested,
                f"{target_format.name} Images (*.{target_format.extension})"
            )
            if not target_path:
                return
            self.last_save_dir = os.path.dirname(target_path)

        self.download_button.setEnabled(False)
        self.statusBar.showMessage(f"Downloading {w}x{h} {format_selector}...")
        self._run(
            self.controller.submit_download(w, h, format_selector, target_path=target_path),
            on_result=self.signals.download_finished.emit,
            on_error=self.on_download_error,
        )

    def on_download_error(self, error):
        # Failures outside the pipeline errors still end the download in the UI
        self.signals.download_finished.emit({"success": False, "error": GENERIC_DOWNLOAD_ERROR})

    def on_download_finished(self, result):
        self.download_button.setEnabled(True)
        if result.get("success"):
            self.statusBar.showMessage(f"Saved {result.get('path')}", 5000)
        else:
            self.statusBar.clearMessage()
            QMessageBox.warning(self, "Download Error", result.get("error", "Download failed."))

    def show_notice(self, message):
        QMessageBox.information(self, "Presets", message)

    def closeEvent(self, event):
        try:
            self.loop_thread.submit(self.controller.stop()).result(timeout=2)
        except Exception as e:
            _logger.warning("Controller did not stop cleanly: %s", e)
        self.loop_thread.stop()
        super().closeEvent(event)


def main():
    setup_logger()
    app = QApplication(sys.argv)
    # Try to set a more modern style if available
    try:
        from PyQt6.QtWidgets import QStyleFactory
        app.setStyle(QStyleFactory.create('Fusion'))
    except ImportError:
        pass
    app.setApplicationName("PlaceholderImageDownloader"); app.setOrganizationName("PlaceholderTools")
    main_win = PlaceholderDownloaderApp(); main_win.show()
    return app.exec()


if __name__ == '__main__':
    sys.exit(main())
