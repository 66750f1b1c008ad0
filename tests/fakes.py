"""Stand-ins for the reader and the network used across the tests."""


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text="", headers=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.headers = headers or {"content-type": "application/json"}

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


class FakeView:
    def __init__(self, translator=None):
        self.calls = []
        self._translator = translator

    def select_page(self, index):
        self.calls.append(("page", index))

    def goto(self, pointer):
        self.calls.append(("goto", pointer))

    def goto_fraction(self, fraction):
        self.calls.append(("fraction", fraction))

    def translator(self):
        return self._translator


class FakeClient:
    def __init__(self, record=None, push_result=True):
        self.record = record
        self.push_result = push_result
        self.get_calls = 0
        self.pushes = []

    def get_progress(self, book):
        self.get_calls += 1
        return self.record

    def update_progress(self, book, progress, percentage):
        self.pushes.append((progress, percentage))
        return self.push_result


class FailingTranslator:
    def cfi_to_xpointer(self, cfi):
        raise ValueError("no such node")

    def xpointer_to_cfi(self, xpointer):
        raise ValueError("no such node")
