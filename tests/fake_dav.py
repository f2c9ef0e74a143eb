"""
In-memory stand-ins for the caldav library's client objects.
"""

from caldav.elements import dav


class FakeDAVResponse:
    def __init__(self, status: int = 201, headers: dict | None = None, raw: str = ""):
        self.status = status
        self.headers = headers or {}
        self.raw = raw


class FakeDAVObject:
    def __init__(self, url: str, data: str, etag: str | None = None):
        self.url = url
        self.data = data
        self.props = {dav.GetEtag.tag: etag} if etag else {}


class FakeDAVCalendar:
    def __init__(self, url: str, name: str | None = None, objects=None, props: dict | None = None):
        self.url = url
        self.name = name
        self.objects = list(objects or [])
        self.props = dict(props or {})
        self.searches: list[dict] = []
        self.search_error: Exception | None = None

    def search(self, **kwargs):
        self.searches.append(kwargs)
        if self.search_error:
            raise self.search_error
        return list(self.objects)

    def get_properties(self, props):
        return dict(self.props)


class FakePrincipal:
    def __init__(self, client: "FakeDAVClient"):
        self._client = client

    @property
    def calendar_home_set(self):
        if self._client.discovery_error:
            raise self._client.discovery_error
        return self._client.url

    def calendars(self):
        return list(self._client.calendars.values())


class FakeCalendarSet:
    """Replacement for caldav.CalendarSet listing the fake client's calendars."""

    def __init__(self, client=None, url=None):
        self.client = client
        self.url = url

    def calendars(self):
        self.client.listed_urls.append(self.url)
        return list(self.client.calendars.values())


class FakeDAVClient:
    """
    Duck-typed caldav.DAVClient. Pass ``client.connect`` as the provider's
    client_factory to capture the constructor arguments.
    """

    def __init__(self, calendars=None, discovery_error: Exception | None = None):
        self.calendars = {c.url: c for c in calendars or []}
        self.discovery_error = discovery_error
        self.url = None
        self.connect_kwargs: dict = {}
        self.puts: list[tuple[str, bytes, dict]] = []
        self.deletes: list[str] = []
        self.listed_urls: list[str] = []
        self.put_response = FakeDAVResponse(201, {"ETag": '"etag-new"'})
        self.delete_response = FakeDAVResponse(204)

    def connect(self, url=None, **kwargs):
        self.url = url
        self.connect_kwargs = kwargs
        return self

    def principal(self):
        return FakePrincipal(self)

    def calendar(self, url=None):
        return self.calendars.setdefault(url, FakeDAVCalendar(url))

    def put(self, url, body, headers=None):
        self.puts.append((url, body, dict(headers or {})))
        return self.put_response

    def delete(self, url):
        self.deletes.append(url)
        return self.delete_response
