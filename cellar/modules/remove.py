# cellar/modules/remove.py
"""
Remover: safe removal of installed formulae.

Removal order: refuse if other installed formulae still record this one as a
dependency (unless forced), unlink the keg from the prefix, delete the keg,
then drop the receipt. The receipt goes last so an interrupted uninstall can
simply be run again.
"""

from __future__ import annotations
import os
from typing import List, Optional

from cellar.modules import logger
from cellar.modules.config import Settings
from cellar.modules.errors import DependentsInstalled, NotInstalled
from cellar.modules.link import Linker
from cellar.modules.receipts import Receipt, ReceiptStore
from cellar.modules.utils import Utils


class Remover:
    def __init__(self, settings: Settings, receipts: ReceiptStore, linker: Optional[Linker] = None):
        self.settings = settings
        self.receipts = receipts
        self.linker = linker or Linker(settings.prefix, settings.cellar)
        self.log = logger.Logger("remove")

    def check_reverse_dependencies(self, name: str) -> List[str]:
        dependents = self.receipts.reverse_dependencies(name)
        self.log.debug(f"Reverse deps for {name}: {dependents}")
        return dependents

    def uninstall(self, name: str, force: bool = False) -> Receipt:
        receipt = self.receipts.query(name)
        if receipt is None:
            raise NotInstalled(name)

        dependents = self.check_reverse_dependencies(name)
        if dependents and not force:
            raise DependentsInstalled(name, dependents)
        if dependents:
            self.log.warning(f"Removing {name} although {', '.join(dependents)} depend on it")

        keg = self.settings.keg_path(name, receipt.version)
        if os.path.isdir(keg):
            self.linker.unlink(keg)
            Utils.remove_tree(keg)
        else:
            self.log.warning(f"Keg {keg} is already gone")

        rack = os.path.dirname(keg)
        if os.path.isdir(rack) and not os.listdir(rack):
            os.rmdir(rack)

        self.receipts.remove(name)
        self.log.success(f"Uninstalled {name} {receipt.version}")
        return receipt

    def leaves(self) -> List[str]:
        """Installed formulae that nothing else depends on."""
        names = self.receipts.names()
        return [n for n in names if not self.receipts.reverse_dependencies(n)]
