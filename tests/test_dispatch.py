#+
# Tests for server-side dispatch of method calls to exported objects.
#-

import pytest
import dbroute
import relay
from dbroute import \
    DBUS, \
    Message
from conftest import \
    SERVICE_NAME, \
    Greeter, \
    method_call

GREETER = "/org/example/greeter"

def test_unknown_interface(bus, greeter) :
    reply = greeter.dispatch(method_call(GREETER, "org.example.Missing", "Hello", "x"))
    assert reply.type == DBUS.MESSAGE_TYPE_ERROR
    assert reply.error_name == DBUS.ERROR_UNKNOWN_METHOD
    assert reply.args == ["Interface \"org.example.Missing\" of object \"%s\" doesn't exist" % GREETER]
    assert reply.reply_serial == 1
    assert list(bus.message_queue) == [reply]
#end test_unknown_interface

def test_unknown_method(greeter) :
    reply = greeter.dispatch(method_call(GREETER, "org.example.Greeter", "Goodbye"))
    assert reply.error_name == DBUS.ERROR_UNKNOWN_METHOD
    assert \
        (
            reply.args
        ==
            [
                "Method \"Goodbye\" on interface \"org.example.Greeter\" of object \"%s\" doesn't exist"
            %
                GREETER
            ]
        )
#end test_unknown_method

def test_single_value_result(greeter) :
    reply = greeter.dispatch(method_call(GREETER, "org.example.Greeter", "Hello", "world", signature = "s"))
    assert reply.type == DBUS.MESSAGE_TYPE_METHOD_RETURN
    assert reply.signature == ["s"]
    assert reply.args == ["Hello, world!"]
#end test_single_value_result

def test_handler_selected_by_interface(greeter) :
    first = greeter.dispatch(method_call(GREETER, "org.example.Greeter", "Foo"))
    second = greeter.dispatch(method_call(GREETER, "org.example.Other", "Foo"))
    assert first.args == ["greeter"]
    assert second.args == ["other"]
#end test_handler_selected_by_interface

def test_multiple_and_empty_results(greeter) :
    reply = greeter.dispatch(method_call(GREETER, "org.example.Other", "Pair"))
    assert reply.signature == ["s", "i"]
    assert reply.args == ["two", 2]
    reply = greeter.dispatch(method_call(GREETER, "org.example.Other", "Nothing"))
    assert reply.type == DBUS.MESSAGE_TYPE_METHOD_RETURN
    assert reply.args == []
    reply = greeter.dispatch(method_call(GREETER, "org.example.Other", "Bar", 2, 3, signature = "ii"))
    assert reply.args == [5]
#end test_multiple_and_empty_results

def test_output_zip_is_lenient(service) :
    # mismatched result counts are truncated to the shorter, not rejected.

    class Loose(relay.Object) :
        with relay.dbus_interface("org.example.Loose") :
            @relay.dbus_method("TooMany", out_signature = "s")
            def too_many(self) :
                return ("a", "b", "c")
            #end too_many
            @relay.dbus_method("TooFew", out_signature = "sii")
            def too_few(self) :
                return ["a"]
            #end too_few
        #end with
    #end Loose

    loose = Loose("/loose")
    service.export(loose)
    reply = loose.dispatch(method_call("/loose", "org.example.Loose", "TooMany"))
    assert reply.type == DBUS.MESSAGE_TYPE_METHOD_RETURN
    assert reply.args == ["a"]
    reply = loose.dispatch(method_call("/loose", "org.example.Loose", "TooFew"))
    assert reply.type == DBUS.MESSAGE_TYPE_METHOD_RETURN
    assert reply.signature == ["s"]
    assert reply.args == ["a"]
#end test_output_zip_is_lenient

def test_handler_exception_becomes_error_reply(bus, greeter) :
    reply = greeter.dispatch(method_call(GREETER, "org.example.Other", "Fail"))
    assert reply.type == DBUS.MESSAGE_TYPE_ERROR
    assert reply.error_name == DBUS.ERROR_FAILED
    assert reply.reply_serial == 1
    assert reply.args[0].startswith("something broke; caused by method_call")
    assert "member=Fail" in reply.args[0]
    # dispatcher keeps working afterwards
    reply = greeter.dispatch(method_call(GREETER, "org.example.Greeter", "Foo"))
    assert reply.args == ["greeter"]
    assert len(bus.message_queue) == 2
#end test_handler_exception_becomes_error_reply

def test_handler_dbus_error_keeps_name(greeter) :
    reply = greeter.dispatch(method_call(GREETER, "org.example.Other", "Refuse"))
    assert reply.error_name == "org.example.Error.Refused"
    assert reply.args[0].startswith("not today; caused by ")
#end test_handler_dbus_error_keeps_name

def test_wrong_argument_count_becomes_error_reply(greeter) :
    reply = greeter.dispatch(method_call(GREETER, "org.example.Greeter", "Hello"))
    assert reply.error_name == DBUS.ERROR_FAILED
#end test_wrong_argument_count_becomes_error_reply

def test_other_message_types_ignored(bus, greeter) :
    signal = Message.new_signal(GREETER, "org.example.Greeter", "Greeted")
    assert greeter.dispatch(signal) == None
    assert len(bus.message_queue) == 0
#end test_other_message_types_ignored

def test_dispatch_requires_export() :
    orphan = Greeter("/orphan")
    assert orphan.service == None
    with pytest.raises(AssertionError) :
        orphan.dispatch(method_call("/orphan", "org.example.Greeter", "Foo"))
    #end with
#end test_dispatch_requires_export

def test_export_lifecycle(bus, service) :
    obj = Greeter("/a/b")
    service.export(obj)
    assert obj.service is service
    assert service.exists("/a/b")
    assert not service.exists("/a")
    other = bus.request_service("org.example.Other")
    with pytest.raises(RuntimeError) :
        other.export(obj)
    #end with
    with pytest.raises(dbroute.DBusError) as excinfo :
        service.export(Greeter("/a/b"))
    #end with
    assert excinfo.value.name == DBUS.ERROR_OBJECT_PATH_IN_USE
    assert service.unexport(obj)
    assert obj.service == None
    assert service.get_node("/a") == None
    assert not service.unexport(obj)
    with pytest.raises(TypeError) :
        service.export("/a/b")
    #end with
#end test_export_lifecycle

def test_service_routing(bus, service) :
    reply = service.dispatch(method_call("/nowhere", "org.example.Greeter", "Foo"))
    assert reply.error_name == DBUS.ERROR_UNKNOWN_OBJECT
    assert reply.args == ["Object \"/nowhere\" doesn't exist"]
    reply = service.dispatch(method_call("/org/example", "org.example.Greeter", "Foo"))
    assert reply.error_name == DBUS.ERROR_UNKNOWN_OBJECT
    reply = service.dispatch(method_call(GREETER, "org.example.Greeter", "Foo"))
    assert reply.args == ["greeter"]
#end test_service_routing

def test_service_introspection(service) :
    xml = service.introspect("/org/example")
    parsed = dbroute.Introspection.parse(xml)
    assert parsed.nodes == ["greeter", "settings"]
    assert list(i.name for i in parsed.interfaces) == [DBUS.INTERFACE_INTROSPECTABLE]
    reply = service.dispatch(method_call(GREETER, DBUS.INTERFACE_INTROSPECTABLE, "Introspect"))
    parsed = dbroute.Introspection.parse(reply.args[0])
    assert \
        (
            list(i.name for i in parsed.interfaces)
        ==
            [DBUS.INTERFACE_INTROSPECTABLE, "org.example.Greeter", "org.example.Other"]
        )
    greeter_iface = parsed.interfaces_by_name["org.example.Greeter"]
    assert greeter_iface.methods["Hello"].in_signature == ["s"]
    assert greeter_iface.signals["Greeted"].signature == ["s"]
    bar = parsed.interfaces_by_name["org.example.Other"].methods["Bar"]
    assert list(a.name for a in bar.in_args) == ["a", "b"]
#end test_service_introspection

def test_emit_signal(bus, greeter) :
    received = []
    bus.add_match \
      (
        {
            "type" : "signal",
            "sender" : SERVICE_NAME,
            "interface" : "org.example.Greeter",
            "member" : "Greeted",
        },
        received.append
      )
    greeter.Greeted("you")
    greeter.emit("org.example.Greeter", "Greeted", "again")
    assert list(m.args for m in received) == [["you"], ["again"]]
    assert received[0].path == GREETER
    assert received[0].type == DBUS.MESSAGE_TYPE_SIGNAL
#end test_emit_signal
