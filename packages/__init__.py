"""Framework-independent code shared by the benefits apps."""
