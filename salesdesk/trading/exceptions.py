"""Errors raised by the order services."""


class DanglingReferenceError(Exception):
    """
    An order line or header points at a product/customer/supplier row that
    does not exist while the order transaction is running. The whole order
    is rolled back.
    """

    def __init__(self, model_name: str, pk):
        self.model_name = model_name
        self.pk = pk
        super().__init__(f"{model_name} #{pk} does not exist")
