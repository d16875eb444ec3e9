from django.http import JsonResponse


def error(message, status=400):
    return JsonResponse({"ok": False, "error": message}, status=status)


def form_messages(form) -> dict:
    """``form.errors`` as ``{field: [message, ...]}``."""
    return {
        field: [e["message"] for e in errs]
        for field, errs in form.errors.get_json_data().items()
    }


def validation_messages(exc) -> dict:
    """A django ``ValidationError`` as ``{field: [message, ...]}``."""
    if hasattr(exc, "error_dict"):
        return exc.message_dict
    return {"__all__": exc.messages}


def errors(messages: dict, status=400):
    return JsonResponse({"ok": False, "errors": messages}, status=status)
