"""Selector line rendering and console tables."""

from dmxwifi.display.selector import DmenuSelector, SelectionPresenter  # noqa: F401
