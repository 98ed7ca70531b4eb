"""
Authorization: credential verification, role catalog and the request
authorization pipeline.

Import from the submodules (``auth.pipeline``, ``auth.dependencies``); the
package itself stays empty so the models can be imported without pulling in
the billing and usage layers.
"""
