"""
Core — Response Renderer

Wraps successful payloads as ``{"success": true, "data": ...}``. Paginated
listings move their links into ``meta``; cursor pages carry no count.
Error bodies are already shaped by ``standard_exception_handler`` and views
may return a ready envelope, both are rendered as-is.

@file core/renderers.py
"""

from rest_framework.renderers import JSONRenderer


PAGINATION_KEYS = ('count', 'next', 'previous')


class StandardJSONRenderer(JSONRenderer):

    def render(self, data, accepted_media_type=None, renderer_context=None):
        response = (renderer_context or {}).get('response')
        if response is not None and response.status_code >= 400:
            return super().render(data, accepted_media_type, renderer_context)
        if data is None or (isinstance(data, dict) and 'success' in data):
            return super().render(data, accepted_media_type, renderer_context)

        if isinstance(data, dict) and 'results' in data:
            meta = {key: data[key] for key in PAGINATION_KEYS if key in data}
            envelope = {'success': True, 'data': data['results'], 'meta': meta}
        else:
            envelope = {'success': True, 'data': data}
        return super().render(envelope, accepted_media_type, renderer_context)
