"""Callback bodies in the shapes the M-Pesa network posts them."""


def stk_callback(merchant_request_id, checkout_request_id, result_code=0, amount=None,
                 receipt=None, phone=None, description=None):
    callback = {
        "MerchantRequestID": merchant_request_id,
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": description or (
            "The service request is processed successfully." if result_code == 0 else "Request cancelled by user"
        ),
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {"Item": [
            {"Name": "Amount", "Value": amount},
            {"Name": "MpesaReceiptNumber", "Value": receipt},
            {"Name": "Balance"},
            {"Name": "TransactionDate", "Value": 20250326101530},
            {"Name": "PhoneNumber", "Value": int(phone) if phone else None},
        ]}
    return {"Body": {"stkCallback": callback}}


def b2c_result(originator_conversation_id, conversation_id, result_code=0, amount=None,
               receipt=None, phone=None, utility_balance=None, description=None):
    result = {
        "ResultType": 0,
        "ResultCode": result_code,
        "ResultDesc": description or (
            "The service request is processed successfully." if result_code == 0
            else "The balance is insufficient for the transaction."
        ),
        "OriginatorConversationID": originator_conversation_id,
        "ConversationID": conversation_id,
        "TransactionID": receipt or "UNKNOWN0000",
    }
    if result_code == 0:
        parameters = [
            {"Key": "TransactionAmount", "Value": amount},
            {"Key": "TransactionReceipt", "Value": receipt},
            {"Key": "ReceiverPartyPublicName", "Value": f"{phone} - Test Employee"},
            {"Key": "TransactionCompletedDateTime", "Value": "26.03.2025 10:15:30"},
            {"Key": "B2CRecipientIsRegisteredCustomer", "Value": "Y"},
        ]
        if utility_balance is not None:
            parameters.append({"Key": "B2CUtilityAccountAvailableFunds", "Value": utility_balance})
        result["ResultParameters"] = {"ResultParameter": parameters}
    return {"Result": result}


def pay_bill(receipt, amount, reference, phone, transaction_type="Pay Bill"):
    return {
        "TransactionType": transaction_type,
        "TransID": receipt,
        "TransTime": "20250326101530",
        "TransAmount": f"{amount}.00",
        "BusinessShortCode": "600638",
        "BillRefNumber": reference,
        "InvoiceNumber": "",
        "OrgAccountBalance": "49197.00",
        "ThirdPartyTransID": "",
        "MSISDN": phone,
        "FirstName": "John",
    }


def balance_result(value, result_code=0):
    return {"Result": {
        "ResultType": 0,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully.",
        "OriginatorConversationID": "BAL-ORIG-1",
        "ConversationID": "BAL-CONV-1",
        "TransactionID": "SCK0000000",
        "ResultParameters": {"ResultParameter": [
            {"Key": "AccountBalance", "Value": value},
            {"Key": "BOCompletedTime", "Value": 20250326101530},
        ]},
    }}
