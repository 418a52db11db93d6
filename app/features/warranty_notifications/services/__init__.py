"""
Warranty notification services (scheduler, preference evaluation, sharing).

Import from the submodules directly; channels depend on
``services.preferences`` so this package stays import-free.
"""
