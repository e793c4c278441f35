from apps.core.academic_sessions.services import find_current_period


class CurrentSchoolMiddleware:
    """
    Resolves tenant context for every request.

    ``request.current_school`` comes from the signed-in user's school and
    ``request.current_period`` from that school's active session and term.
    Views pass the period down explicitly; services never look it up.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.current_school = None
        request.current_period = None

        user = getattr(request, 'user', None)
        if user and user.is_authenticated and getattr(user, 'school_id', None):
            request.current_school = user.school

        if request.current_school:
            request.current_period = find_current_period(request.current_school)

        return self.get_response(request)
