from unifiedauth.core.protection.controller import AutoProtectionController, ProtectionScheduler, SweepReport

__all__ = ["AutoProtectionController", "ProtectionScheduler", "SweepReport"]
