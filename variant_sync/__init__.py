"""Variant Watcher: keeps resized image variants in sync with a watched folder.

Watches a source folder for images and converges an output folder to
the fixed matrix of crop and encoding variants for every source,
removing those variants again when the source is deleted.
"""

__version__ = "1.0.0"
__app_name__ = "Variant Watcher"
